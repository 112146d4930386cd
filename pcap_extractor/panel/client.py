"""Client for Grafana's datasource query API as used by the download panel."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from pcap_extractor.core.settings import PLUGIN_TYPE

logger = logging.getLogger(__name__)

REF_ID = "pcap-extract"
QUERY_PATH = "/api/ds/query"


class PanelQueryError(RuntimeError):
    """Raised when a datasource query is rejected."""


@dataclass(slots=True)
class QueryTemplate:
    datasource_uid: str
    action: str
    job_id: str
    extract: dict[str, list[int]] | None = None

    def to_query(self) -> dict[str, Any]:
        query: dict[str, Any] = {
            "refId": REF_ID,
            "datasource": {"type": PLUGIN_TYPE, "uid": self.datasource_uid},
            "action": self.action,
            "jobId": self.job_id,
        }
        if self.extract is not None:
            query["extract"] = self.extract
        return query


def parse_response(payload: Any) -> dict[str, Any]:
    """Map field names of the first result frame to their first value."""

    values: dict[str, Any] = {}
    if not isinstance(payload, Mapping):
        return values
    results = payload.get("results")
    result = results.get(REF_ID) if isinstance(results, Mapping) else None
    if not isinstance(result, Mapping):
        return values
    frames = result.get("frames")
    if not isinstance(frames, list) or not frames or not isinstance(frames[0], Mapping):
        return values

    frame = frames[0]
    schema = frame.get("schema")
    data = frame.get("data")
    fields = schema.get("fields") if isinstance(schema, Mapping) else None
    columns = data.get("values") if isinstance(data, Mapping) else None
    if not isinstance(fields, list) or not isinstance(columns, list):
        return values

    for index, field in enumerate(fields):
        name = field.get("name") if isinstance(field, Mapping) else None
        if not name or index >= len(columns):
            continue
        column = columns[index]
        if isinstance(column, list) and column:
            values[name] = column[0]
    return values


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(body, Mapping):
        results = body.get("results")
        result = results.get(REF_ID) if isinstance(results, Mapping) else None
        if isinstance(result, Mapping) and result.get("error"):
            return str(result["error"])
        for key in ("message", "detail", "error"):
            if body.get(key):
                return str(body[key])
    return response.text or f"HTTP {response.status_code}"


class DatasourceQueryClient:
    """Posts panel queries to Grafana (or the standalone datasource service)."""

    def __init__(
        self,
        base_url: str,
        *,
        api_token: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._url = f"{base_url.rstrip('/')}{QUERY_PATH}"
        self._headers = headers
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    def query(self, template: QueryTemplate) -> dict[str, Any]:
        payload = {"queries": [template.to_query()]}
        logger.debug("Sending request to backend %s", payload)
        response = self._client.post(self._url, json=payload, headers=self._headers)
        # Redirects (e.g. to a login page) count as failures too.
        if not response.is_success:
            raise PanelQueryError(_error_message(response))
        try:
            body = response.json()
        except ValueError as exc:
            raise PanelQueryError(f"invalid response from {self._url}: HTTP {response.status_code}") from exc

        fields = parse_response(body)
        logger.debug("Backend response received %s", fields)
        return fields

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "DatasourceQueryClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
