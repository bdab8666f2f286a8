from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.omnibridge import router as omnibridge_router
from app.config import settings
from app.db import create_all
from app.errors import register_error_handlers
from app.logging import configure_logging, get_logger
from app.observability import ObservabilityMiddleware
from app.telemetry import setup_otel

logger = get_logger(__name__)

app = FastAPI(title="Conductor OmniBridge API")

configure_logging()
setup_otel(app)
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(omnibridge_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def _create_tables():
    if settings.db_create_all:
        create_all()
        logger.info("database_tables_created")
