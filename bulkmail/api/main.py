import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware

from bulkmail.api.rate_limit import increment_rate_limit_exceeded, limiter
from bulkmail.api.routes_campaigns import router as campaigns_router
from bulkmail.api.routes_health import router as health_router
from bulkmail.api.routes_history import router as history_router
from bulkmail.api.routes_jobs import router as jobs_router
from bulkmail.api.routes_metrics import router as metrics_router
from bulkmail.api.routes_tracking import router as tracking_router
from bulkmail.api.routes_user import router as user_router
from bulkmail.core.config import settings
from bulkmail.core.errors import register_error_handlers
from bulkmail.core.logger import init_logging

logger = logging.getLogger(__name__)


async def _rate_limit_handler(request, exc: RateLimitExceeded):
    increment_rate_limit_exceeded()
    return JSONResponse(status_code=429, content={"detail": "Too many requests"})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):  # type: ignore[override]
        response = await call_next(request)
        response.headers.setdefault(
            "Strict-Transport-Security",
            f"max-age={settings.HSTS_SECONDS}; includeSubDomains",
        )
        response.headers.setdefault("Referrer-Policy", "same-origin")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        # Survey confirmation pages are the only HTML served; none need framing
        response.headers.setdefault("X-Frame-Options", "DENY")
        return response


def create_app() -> FastAPI:
    init_logging()

    is_production = settings.ENV.lower() == "prod"
    app = FastAPI(
        title=settings.APP_NAME,
        debug=False,
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
    )
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    register_error_handlers(app)

    app.include_router(tracking_router, prefix="/track")
    app.include_router(campaigns_router, prefix="/campaigns")
    app.include_router(jobs_router, prefix="/jobs")
    app.include_router(user_router, prefix="/user")
    app.include_router(history_router, prefix="/history")
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(health_router)
    logger.info("%s started (env=%s)", settings.APP_NAME, settings.ENV)
    return app


app = create_app()
