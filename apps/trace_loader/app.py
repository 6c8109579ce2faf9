# apps/trace_loader/app.py

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from apps.trace_loader.config import settings
from apps.trace_loader.routers.loads_router import router as loads_router
from apps.trace_loader.utils.otel import configure_logging

configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="Scylla Trace Loader",
    description="Rebuilds Scylla tracing sessions as OpenTelemetry traces",
    version="0.1.0",
)

# ------------------------------------------------------------------
# Prometheus Metrics
# ------------------------------------------------------------------
app.mount("/metrics", make_asgi_app())


# ------------------------------------------------------------------
# Business Routers
# ------------------------------------------------------------------
app.include_router(loads_router, prefix="/v1")


@app.get("/healthz")
def health_check():
    return {"status": "ok", "service": "trace-loader"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "apps.trace_loader.app:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=False,  # reload would register the Prometheus metrics twice
    )
