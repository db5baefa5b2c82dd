import uvicorn
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.logging import get_api_logger_safe, configure_logging
from app.containers import AppContainer
from app.main import ApplicationOrchestrator
from api.middleware.error_handling import ErrorHandlingMiddleware, register_exception_handlers
from api.routers import accounts, auth, fsm, history, realtime, system, webhook

logger = get_api_logger_safe("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the trading desk for as long as the API is up"""
    orchestrator: ApplicationOrchestrator = app.state.orchestrator
    logger.info("Starting trading desk API server")
    await orchestrator.startup()

    yield

    logger.info("Shutting down trading desk API server")
    try:
        await orchestrator.shutdown()
    except Exception as e:
        logger.error("Error during API shutdown", error=str(e))


def _build_uvicorn_log_config() -> dict:
    """Return a minimal log config that cooperates with our structlog handlers.

    Uvicorn applies this dictConfig at startup; handler lists are left out so
    the API channel handlers attached by our logging setup stay in place.
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "loggers": {
            "uvicorn": {"level": "INFO", "propagate": False},
            "uvicorn.error": {"level": "INFO", "propagate": False},
            "uvicorn.access": {"level": "INFO", "propagate": False},
            "fastapi": {"level": "INFO", "propagate": False},
        },
    }


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Creates and configures the FastAPI application"""
    container = container or AppContainer()
    settings = container.settings()
    configure_logging(settings)

    app = FastAPI(
        title=f"{settings.app_name} API",
        version=settings.version,
        description="Threshold trading desk: state machines, webhook signals, "
                    "multi-account live orders and daily history.",
        lifespan=lifespan,
    )
    app.state.container = container
    app.state.orchestrator = ApplicationOrchestrator(container)

    container.wire(modules=[
        "api.dependencies",
        "api.routers.realtime",
    ])

    app.add_middleware(ErrorHandlingMiddleware)

    cors_origins = settings.api.cors_origins
    if settings.environment == "production" and "*" in cors_origins:
        raise ValueError(
            "CORS wildcard (*) not allowed in production. "
            "Specify exact origins in API__CORS_ORIGINS environment variable."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(system.router)
    app.include_router(fsm.router)
    app.include_router(history.router)
    app.include_router(accounts.router)
    app.include_router(auth.router)
    app.include_router(webhook.router)
    app.include_router(realtime.router)

    return app


def run(host: Optional[str] = None, port: Optional[int] = None):
    """Run the API server (and with it the whole desk)"""
    app = create_app()
    settings = app.state.container.settings()
    uvicorn.run(
        app,
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_level="info",
        access_log=True,
        log_config=_build_uvicorn_log_config(),
    )


if __name__ == "__main__":
    run()
