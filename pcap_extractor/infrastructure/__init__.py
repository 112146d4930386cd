"""Infrastructure layer exports."""

from .aws import AwsClients, ObjectPresigner, StepFunctionsClient, create_aws_clients, create_session
from .instances import InstanceManager

__all__ = [
    "AwsClients",
    "InstanceManager",
    "ObjectPresigner",
    "StepFunctionsClient",
    "create_aws_clients",
    "create_session",
]
