from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from pcap_extractor.application import Datasource, get_instance_manager
from pcap_extractor.core.errors import SettingsError
from pcap_extractor.core.frames import DataResponse, QueryDataResponse

router = APIRouter(prefix="/ds", tags=["query"])


def _datasource_uid(query: dict[str, Any]) -> str | None:
    datasource = query.get("datasource")
    if isinstance(datasource, dict):
        uid = datasource.get("uid")
    else:
        uid = datasource
    return str(uid) if uid else None


def resolve_datasource(uid: str | None) -> Datasource:
    """Look up a datasource instance, defaulting to the only configured one.

    Raises ``SettingsError`` when the instance cannot be built.
    """

    manager = get_instance_manager()
    if not uid:
        uids = manager.uids()
        uid = uids[0] if len(uids) == 1 else None
    datasource = manager.get(uid) if uid else None
    if datasource is None:
        raise HTTPException(status_code=404, detail="data source not found")
    return datasource


@router.post("/query")
def query_data(payload: dict) -> JSONResponse:
    """Run datasource queries and return Grafana data-plane frames."""
    queries = payload.get("queries")
    if not isinstance(queries, list) or not queries:
        raise HTTPException(status_code=400, detail="queries are required")

    response = QueryDataResponse()
    grouped: dict[str, tuple[Datasource, list[dict[str, Any]]]] = {}
    for query in queries:
        if not isinstance(query, dict):
            raise HTTPException(status_code=400, detail="each query must be an object")
        try:
            datasource = resolve_datasource(_datasource_uid(query))
        except SettingsError as exc:
            response.responses[str(query.get("refId") or "A")] = DataResponse.from_error(str(exc))
            continue
        _, bucket = grouped.setdefault(str(id(datasource)), (datasource, []))
        bucket.append(query)

    for datasource, items in grouped.values():
        response.responses.update(datasource.query_data(items).responses)

    return JSONResponse(response.to_json(), status_code=response.http_status)
