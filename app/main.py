from typing import Any, cast
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.core.config import settings
from app.core.errors import AuthorizationError, init_sentry
from app.core.logging_config import get_logger
from app.core.scheduler import start_scheduler, stop_scheduler
from app.api import cron, webhooks

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Billing reconciler starting", environment=settings.ENVIRONMENT)
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    if settings.RUN_SCHEDULER:
        start_scheduler()
    else:
        logger.info("RUN_SCHEDULER is false, skipping scheduler startup in this process")

    try:
        yield
    finally:
        if settings.RUN_SCHEDULER:
            stop_scheduler()


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

# Trust X-Forwarded-* headers from the platform proxy
app.add_middleware(cast(Any, ProxyHeadersMiddleware), trusted_hosts=["*"])


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    logger.warning("Unauthorized request", path=request.url.path, reason=str(exc))
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


app.include_router(cron.router, prefix=settings.API_V1_STR, tags=["cron"])
app.include_router(webhooks.router, prefix=settings.API_V1_STR, tags=["webhooks"])


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}
