"""Domain entities for PCAP extraction queries."""
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, model_validator
from pydantic import ValidationError as PydanticValidationError

from pcap_extractor.core.errors import ValidationError

ACTION_REQUEST = "request"
ACTION_STATUS = "status"


class ExecutionStatus(str, Enum):
    """Execution states reported by Step Functions."""

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ABORTED = "ABORTED"
    PENDING_REDRIVE = "PENDING_REDRIVE"


class HealthStatus(str, Enum):
    OK = "OK"
    ERROR = "ERROR"


class QueryModel(BaseModel):
    """A single datasource query.

    Keys are matched case-insensitively, an exact match winning, so the
    query editor's ``JobId``/``Extract`` and the panel's ``jobId``/``extract``
    decode to the same model. Unknown keys such as ``refId`` are ignored.
    """

    model_config = ConfigDict(frozen=True)

    action: StrictStr = ""
    job_id: StrictStr = Field(default="", alias="JobId")
    extract: dict[str, list[StrictInt]] = Field(default_factory=dict, alias="Extract")

    @model_validator(mode="before")
    @classmethod
    def _fold_keys(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data

        canonical = {"action": "action", "jobid": "JobId", "extract": "Extract"}
        folded: dict[str, Any] = {}
        exact: set[str] = set()
        for key, value in data.items():
            target = canonical.get(str(key).lower())
            if target is None or value is None:
                continue
            if key == target:
                folded[target] = value
                exact.add(target)
            elif target not in exact:
                folded[target] = value
        return folded


def parse_query(payload: Mapping[str, Any]) -> QueryModel:
    try:
        return QueryModel.model_validate(payload)
    except PydanticValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'query'}: {error['msg']}" for error in exc.errors()
        )
        raise ValidationError(f"json unmarshal: {details}") from exc


@dataclass(slots=True)
class StepFunctionInput:
    """Execution input handed to the extraction state machine."""

    job_id: str
    bucket: str
    extract: dict[str, list[int]] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({"jobId": self.job_id, "bucket": self.bucket, "extract": self.extract})


@dataclass(slots=True)
class CheckHealthResult:
    status: HealthStatus
    message: str

    @property
    def ok(self) -> bool:
        return self.status is HealthStatus.OK

    def to_json(self) -> dict[str, str]:
        return {"status": self.status.value, "message": self.message}
