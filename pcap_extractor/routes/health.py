from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from pcap_extractor.application import get_instance_manager
from pcap_extractor.core.errors import SettingsError
from pcap_extractor.domain import CheckHealthResult, HealthStatus

router = APIRouter(prefix="/datasources", tags=["health"])


@router.get("/uid/{uid}/health")
def check_health(uid: str) -> JSONResponse:
    """Backs the "Save & test" button of the datasource settings page."""
    try:
        datasource = get_instance_manager().get(uid)
    except SettingsError as exc:
        result = CheckHealthResult(HealthStatus.ERROR, str(exc))
        return JSONResponse(result.to_json(), status_code=400)
    if datasource is None:
        raise HTTPException(status_code=404, detail="data source not found")
    result = datasource.check_health()
    return JSONResponse(result.to_json(), status_code=200 if result.ok else 400)
