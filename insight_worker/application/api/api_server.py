from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from insight_worker.application.api.route.analysis import router as analysis_router
from insight_worker.application.api.schema import ApiError, failure
from insight_worker.application.container import WorkerContainer
from insight_worker.infrastructure.config.settings import get_settings
from insight_worker.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def create_app(container: Optional[WorkerContainer] = None) -> FastAPI:
    """Build the API around a container; one is created from settings when omitted"""

    if container is None:
        settings = get_settings()
        setup_logging(settings.log_level, settings.log_format, settings.agent_name)
        container = WorkerContainer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await container.startup()
        logger.info("API server started")
        yield
        await container.shutdown()
        logger.info("API server shutdown")

    app = FastAPI(title="Insight Worker API", lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(
            status_code=exc.status_code,
            content=failure(exc.code, exc.message, exc.details)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=failure("INVALID_REQUEST", "Invalid request", str(exc.errors()))
        )

    app.include_router(analysis_router)
    return app


def main():
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
