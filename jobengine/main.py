from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from jobengine.config.logging import setup_logging
from jobengine.config.settings import Settings, get_settings
from jobengine.config.settings import settings as default_settings
from jobengine.services import BackgroundServices
from jobengine.v1.core.exceptions import (
    JobEngineError,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_engine_exception_handler,
    request_validation_exception_handler,
)
from jobengine.v1.healthz import router as health_router
from jobengine.v1.jobs.routes import router as jobs_router
from jobengine.v1.scheduler.routes import router as schedules_router


def create_app(
    settings: Settings | None = None, services: BackgroundServices | None = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Without `services` the lifespan builds them from settings and closes
    them on shutdown; pre-built services are started and stopped but left
    open for their owner.
    """
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = (
            await BackgroundServices.create(settings) if owned else services
        )
        if settings.enable_background_services:
            await app.state.services.start()
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
            else:
                await app.state.services.stop()

    app = FastAPI(
        title=settings.app_name,
        description="Durable background job queue with cron scheduling",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints are under the /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Routes resolve settings through the same instance the app was built with
    app.dependency_overrides[get_settings] = lambda: settings

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(JobEngineError, job_engine_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(schedules_router, prefix="/v1")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jobengine.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )
