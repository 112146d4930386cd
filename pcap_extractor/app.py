import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pcap_extractor.application import get_instance_manager, load_configured_datasources
from pcap_extractor.routes import health, query

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    get_instance_manager().dispose_all()


def create_app() -> FastAPI:
    app = FastAPI(title="PCAP Extractor Datasource", version="1.0.0", lifespan=lifespan)

    uids = load_configured_datasources()
    if uids:
        logger.info("Configured PCAP extractor datasources: %s", ", ".join(uids))
    else:
        logger.warning("No PCAP extractor datasource configured")

    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(query.router, prefix="/api")
    app.include_router(health.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "PCAP Extractor Datasource",
                "docs": "/docs",
                "datasources": get_instance_manager().uids(),
            }
        )

    return app
