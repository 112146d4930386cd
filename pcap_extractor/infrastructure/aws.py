"""AWS integration for the datasource.

The datasource only needs three Step Functions calls and S3 presigning, so
the contracts below are kept that narrow. boto3 clients satisfy them as-is;
tests pass in-memory fakes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import boto3
from botocore.config import Config

from pcap_extractor.core.settings import PluginSettings

logger = logging.getLogger(__name__)

ROLE_SESSION_NAME = "grafana-pcap-extractor"


class StepFunctionsClient(Protocol):
    """Contract for the Step Functions calls used by the datasource."""

    def start_execution(self, *, stateMachineArn: str, name: str, input: str) -> Mapping[str, Any]: ...

    def describe_execution(self, *, executionArn: str) -> Mapping[str, Any]: ...

    def describe_state_machine(self, *, stateMachineArn: str) -> Mapping[str, Any]: ...


class ObjectPresigner(Protocol):
    """Contract for generating presigned S3 URLs."""

    def generate_presigned_url(
        self,
        ClientMethod: str,
        Params: Mapping[str, Any] | None = None,
        ExpiresIn: int = 3600,
    ) -> str: ...


@dataclass(slots=True)
class AwsClients:
    step_functions: StepFunctionsClient
    presigner: ObjectPresigner


def _client_config(**overrides: Any) -> Config:
    # One attempt per call; failures go straight back to the caller.
    return Config(retries={"total_max_attempts": 1, "mode": "standard"}, **overrides)


def create_session(settings: PluginSettings) -> boto3.Session:
    """Create a boto3 session for the configured authentication type."""

    session_kwargs: dict[str, Any] = {}
    if settings.region:
        session_kwargs["region_name"] = settings.region

    if settings.auth_type == "keys":
        session_kwargs["aws_access_key_id"] = settings.access_key or None
        session_kwargs["aws_secret_access_key"] = settings.secret_key or None
        if settings.session_token:
            session_kwargs["aws_session_token"] = settings.session_token
    elif settings.auth_type == "credentials" and settings.profile:
        session_kwargs["profile_name"] = settings.profile

    session = boto3.Session(**session_kwargs)
    if not settings.assume_role_arn:
        return session

    assume_kwargs: dict[str, Any] = {
        "RoleArn": settings.assume_role_arn,
        "RoleSessionName": ROLE_SESSION_NAME,
    }
    if settings.external_id:
        assume_kwargs["ExternalId"] = settings.external_id

    logger.info("Assuming role %s", settings.assume_role_arn)
    sts = session.client("sts", config=_client_config())
    credentials = sts.assume_role(**assume_kwargs)["Credentials"]
    return boto3.Session(
        aws_access_key_id=credentials["AccessKeyId"],
        aws_secret_access_key=credentials["SecretAccessKey"],
        aws_session_token=credentials["SessionToken"],
        region_name=session.region_name,
    )


def create_aws_clients(settings: PluginSettings, session: boto3.Session | None = None) -> AwsClients:
    """Build the Step Functions client and S3 presigner for a datasource."""

    session = session or create_session(settings)
    client_kwargs: dict[str, Any] = {}
    if settings.endpoint:
        client_kwargs["endpoint_url"] = settings.endpoint

    step_functions = session.client("stepfunctions", config=_client_config(), **client_kwargs)
    s3 = session.client("s3", config=_client_config(signature_version="s3v4"), **client_kwargs)
    logger.debug("Created AWS clients for region %s", session.region_name)
    return AwsClients(step_functions=step_functions, presigner=s3)


__all__ = [
    "AwsClients",
    "ObjectPresigner",
    "StepFunctionsClient",
    "create_aws_clients",
    "create_session",
]
