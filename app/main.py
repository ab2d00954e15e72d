from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.woocommerce import router as woocommerce_router
from app.api.woocommerce import webhook_router as woocommerce_webhook_router
from app.db import get_engine
from app.logging import configure_logging, get_logger
from app.services.woocommerce.schema import detect_schema_drift
from app.telemetry import setup_otel

logger = get_logger(__name__)

app = FastAPI(title="woo_sync API")

configure_logging()
setup_otel(app)

app.include_router(woocommerce_webhook_router)
app.include_router(woocommerce_router)


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
def _check_schema():
    problems = detect_schema_drift(get_engine())
    if problems:
        logger.warning("schema_drift_detected count=%s", len(problems))
