from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from epg_catchup import __version__
from epg_catchup.config import CustomSettings, settings as default_settings, setup_logging
from epg_catchup.exceptions import (
    ConfigurationError,
    EpgError,
    EpgNotLoadedError,
    NetworkError,
    ParseError,
)
from epg_catchup.schemas import ErrorDetail, StandardErrorResponse
from epg_catchup.services.catchup_service import CatchupResolver
from epg_catchup.services.epg_load_service import EpgService
from epg_catchup.services.scheduler_service import StalenessScheduler
from epg_catchup.utils.timezone import DateFormatError

from epg_catchup.routers import main_router


logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, message: str, context: dict | None = None) -> JSONResponse:
    body = StandardErrorResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        error=ErrorDetail(code=code, message=message, context=context),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def create_app(
    settings: CustomSettings | None = None,
    service: EpgService | None = None,
    *,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        settings: Settings to use (defaults to the environment-derived settings)
        service: Pre-built EPG service (defaults to EpgService.from_settings)
        start_scheduler: Run the periodic staleness check while the app is up

    Returns:
        Configured FastAPI application
    """
    settings = settings or default_settings
    service = service or EpgService.from_settings(settings)
    resolver = CatchupResolver.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events"""
        logger.info("="*60)
        logger.info("Starting EPG Catchup Service...")
        logger.info("="*60)

        try:
            logger.info("Opening EPG service...")
            await service.open()
            logger.info("EPG service opened successfully")

            if start_scheduler:
                logger.info("Starting scheduler...")
                scheduler = StalenessScheduler(service, settings.epg_stale_check_cron)
                scheduler.start()
                app.state.scheduler = scheduler
                logger.info("Scheduler started successfully")

            logger.info("="*60)
            logger.info("EPG Catchup Service started successfully")
            logger.info("="*60)
        except Exception as e:
            logger.error("="*60)
            logger.error(f"Failed to start EPG Catchup Service: {e}", exc_info=True)
            logger.error("="*60)
            raise

        yield

        logger.info("="*60)
        logger.info("Shutting down EPG Catchup Service...")
        logger.info("="*60)

        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None:
            try:
                scheduler.shutdown()
            except Exception as e:
                logger.error(f"Error during scheduler shutdown: {e}", exc_info=True)
            app.state.scheduler = None

        await service.close()

        logger.info("="*60)
        logger.info("EPG Catchup Service stopped")
        logger.info("="*60)

    app = FastAPI(
        title="EPG Catchup Service",
        version=__version__,
        lifespan=lifespan
    )
    app.state.epg_service = service
    app.state.catchup_resolver = resolver
    app.state.scheduler = None

    app.include_router(main_router)

    @app.exception_handler(NetworkError)
    async def network_error_handler(request: Request, exc: NetworkError):
        return _error_response(
            502,
            "FETCH_FAILED",
            str(exc),
            {"attempts": exc.attempts, "transient": exc.transient},
        )

    @app.exception_handler(ParseError)
    async def parse_error_handler(request: Request, exc: ParseError):
        return _error_response(422, "PARSE_FAILED", str(exc))

    @app.exception_handler(DateFormatError)
    async def date_format_error_handler(request: Request, exc: DateFormatError):
        return _error_response(400, "INVALID_DATE", str(exc))

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        return _error_response(400, "NOT_CONFIGURED", str(exc))

    @app.exception_handler(EpgNotLoadedError)
    async def not_loaded_handler(request: Request, exc: EpgNotLoadedError):
        return _error_response(409, "EPG_NOT_LOADED", str(exc))

    @app.exception_handler(EpgError)
    async def epg_error_handler(request: Request, exc: EpgError):
        logger.error(f"Unhandled EPG error for {request.method} {request.url.path}: {exc}")
        return _error_response(500, "EPG_ERROR", str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with details"""
        logger.error(f"Validation error for {request.method} {request.url.path}")
        logger.error(f"Validation details: {exc.errors()}")

        errors = []
        for error in exc.errors():
            error_dict = {
                "type": error.get("type"),
                "loc": error.get("loc"),
                "msg": error.get("msg"),
                "input": str(error.get("input", ""))[:100]
            }
            errors.append(error_dict)

        return _error_response(422, "VALIDATION_FAILED", "Request validation failed", {"errors": errors})

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn"""
    import uvicorn

    setup_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
