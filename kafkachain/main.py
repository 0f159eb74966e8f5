"""FastAPI inspection service entry point"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from kafkachain import __version__
from kafkachain.api import chains, health
from kafkachain.config import settings
from kafkachain.utils.logger import logger, setup_logging

# Setup logging
setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    logger.info("kafkachain inspection service starting up", extra={
        "version": __version__,
        "backend": settings.backend_scheme,
        "log_level": settings.LOG_LEVEL,
        "monitoring": settings.METRICS_ENABLED
    })
    yield
    # Shutdown
    logger.info("kafkachain inspection service shutting down")


# Create FastAPI app
app = FastAPI(
    title="kafkachain",
    description="Tamper-evident hash chains on a publish/subscribe log",
    version=__version__,
    lifespan=lifespan
)

# ===== Middleware Setup =====

if settings.METRICS_ENABLED:
    from kafkachain.middleware.monitoring import MonitoringMiddleware
    app.add_middleware(MonitoringMiddleware)

    # Prometheus exposition for the chain counters and request latency
    app.mount(settings.METRICS_PATH, make_asgi_app())

# ===== Route Setup =====

app.include_router(health.router)
app.include_router(chains.router)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "service": "kafkachain",
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None
    }


# ===== Error Handlers =====

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for uncaught errors"""
    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={"error": str(exc)},
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred."
        }
    )


def run():
    """Serve the inspection API on HOST:PORT"""
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
