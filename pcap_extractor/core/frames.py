"""Grafana data-plane frames returned by the datasource.

Only string fields are produced, so every field is encoded with the
``string`` type and a column of values.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Field:
    name: str
    values: list[Any] = field(default_factory=list)

    def to_schema(self) -> dict[str, Any]:
        return {"name": self.name, "type": "string", "typeInfo": {"frame": "string"}}


@dataclass(slots=True)
class Frame:
    name: str
    fields: list[Field] = field(default_factory=list)

    def add_field(self, name: str, value: str) -> None:
        self.fields.append(Field(name=name, values=[value]))

    def field_names(self) -> list[str]:
        return [item.name for item in self.fields]

    def get(self, name: str) -> Any | None:
        for item in self.fields:
            if item.name == name and item.values:
                return item.values[0]
        return None

    def to_json(self, ref_id: str | None = None) -> dict[str, Any]:
        schema: dict[str, Any] = {"name": self.name, "fields": [item.to_schema() for item in self.fields]}
        if ref_id:
            schema["refId"] = ref_id
        return {"schema": schema, "data": {"values": [list(item.values) for item in self.fields]}}


@dataclass(slots=True)
class DataResponse:
    frames: list[Frame] = field(default_factory=list)
    error: str | None = None
    status: int = 200

    @classmethod
    def from_error(cls, message: str, status: int = 400) -> "DataResponse":
        return cls(error=message, status=status)

    def to_json(self, ref_id: str | None = None) -> dict[str, Any]:
        if self.error is not None:
            return {"status": self.status, "error": self.error}
        return {"status": self.status, "frames": [frame.to_json(ref_id) for frame in self.frames]}


@dataclass(slots=True)
class QueryDataResponse:
    responses: dict[str, DataResponse] = field(default_factory=dict)

    @property
    def http_status(self) -> int:
        for response in self.responses.values():
            if response.error is not None:
                return response.status
        return 200

    def to_json(self) -> dict[str, Any]:
        return {"results": {ref_id: response.to_json(ref_id) for ref_id, response in self.responses.items()}}
