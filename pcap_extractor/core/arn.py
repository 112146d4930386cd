from __future__ import annotations

from dataclasses import dataclass

from pcap_extractor.core.errors import ArnParseError

ARN_PREFIX = "arn:"
STATE_MACHINE_PREFIX = "stateMachine:"


@dataclass(frozen=True, slots=True)
class Arn:
    partition: str
    service: str
    region: str
    account_id: str
    resource: str

    def __str__(self) -> str:
        return f"arn:{self.partition}:{self.service}:{self.region}:{self.account_id}:{self.resource}"


def parse_arn(value: str) -> Arn:
    """Split an ARN into its sections.

    Only the shape is checked: the ``arn:`` prefix and six colon-separated
    sections. The resource keeps any further colons.
    """

    if not value.startswith(ARN_PREFIX):
        raise ArnParseError("arn: invalid prefix")
    sections = value.split(":", 5)
    if len(sections) != 6:
        raise ArnParseError("arn: not enough sections")
    _, partition, service, region, account_id, resource = sections
    return Arn(
        partition=partition,
        service=service,
        region=region,
        account_id=account_id,
        resource=resource,
    )


def execution_arn(state_machine_arn: str, execution_name: str) -> str:
    """Return the ARN of the named execution of a state machine.

    ``arn:aws:states:eu-west-1:123456789012:stateMachine:extractor`` and
    ``run-1`` give
    ``arn:aws:states:eu-west-1:123456789012:execution:extractor:run-1``.
    """

    parsed = parse_arn(state_machine_arn)
    machine = parsed.resource.replace(STATE_MACHINE_PREFIX, "", 1)
    return f"arn:{parsed.partition}:states:{parsed.region}:{parsed.account_id}:execution:{machine}:{execution_name}"
