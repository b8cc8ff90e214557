import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from backend.app.core.config import settings
from backend.app.core.logging import setup_logging
from backend.app.services.errors import ServiceError
from backend.app.web.routes import limiter, router as auth_router

logger = logging.getLogger(__name__)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.info("Request to %s failed: %s", request.url.path, exc)
    return JSONResponse({"status": "not_found"}, status_code=status.HTTP_404_NOT_FOUND)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.project_name)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ServiceError, service_error_handler)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.environment}

    app.include_router(auth_router)
    return app


app = create_app()
