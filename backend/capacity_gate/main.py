#!/usr/bin/env python3

"""
Capacity Gate - API process
Hosts the admission gate endpoints and, optionally, the periodic scaling loop.
"""

from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

load_dotenv()

from capacity_gate.core.config import settings  # noqa: E402
from capacity_gate.core.exceptions import StoreUnavailableError  # noqa: E402
from capacity_gate.core.logger import get_logger, setup_logging  # noqa: E402
from capacity_gate.middleware.logging_middleware import LoggingMiddleware  # noqa: E402
from capacity_gate.routes import admission, scaling  # noqa: E402
from capacity_gate.services import telemetry  # noqa: E402
from capacity_gate.services.providers import get_scaling_loop, get_store  # noqa: E402

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR, json_logs=settings.ENVIRONMENT == "production")
    logger.info(f"{settings.PROJECT_NAME} starting", mode=settings.BACKEND_MODE)

    store = get_store()
    try:
        await store.connect()
    except StoreUnavailableError as e:
        # admission keeps serving under its outage policy; the client reconnects lazily
        logger.warning(f"Store not reachable at startup: {e}")

    loop = get_scaling_loop()
    if settings.SCALING_LOOP_ENABLED:
        loop.start()

    yield

    # Shutdown
    await loop.stop()
    await store.close()
    logger.info(f"{settings.PROJECT_NAME} shutting down")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Cost-aware capacity control and tiered request admission",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

app.include_router(scaling.router, prefix=f"{settings.API_V1_STR}/scaling", tags=["scaling"])
app.include_router(admission.router, prefix=f"{settings.API_V1_STR}/admission", tags=["admission"])


@app.get("/health", tags=["health"])
async def health_check():
    store_ok = await get_store().ping()
    return {
        "status": "healthy" if store_ok else "degraded",
        "services": {
            "api": "operational",
            "store": "connected" if store_ok else "unavailable",
            "scaling_loop": "running" if get_scaling_loop().running else "stopped",
        },
        "version": settings.VERSION,
    }


@app.get("/", tags=["health"])
async def root():
    return {
        "message": f"{settings.PROJECT_NAME} API",
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/metrics", tags=["monitoring"])
async def metrics():
    """Prometheus metrics endpoint"""
    content, content_type = telemetry.render_latest()
    return Response(content=content, media_type=content_type)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "capacity_gate.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
