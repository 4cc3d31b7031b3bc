import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from bulkmail.core.exceptions import BulkMailException

logger = logging.getLogger("bulkmail.errors")

CORRELATION_HEADER = "X-Correlation-ID"


def _correlated(status_code: int, content: dict) -> JSONResponse:
    correlation_id = uuid.uuid4().hex
    content = {**content, "cid": correlation_id}
    return JSONResponse(status_code=status_code, content=content, headers={CORRELATION_HEADER: correlation_id})


def register_error_handlers(app):
    @app.exception_handler(BulkMailException)
    async def domain_exception(request: Request, exc: BulkMailException):
        if exc.status_code >= 500:
            logger.error("Domain error code=%s path=%s: %s", exc.code, request.url.path, exc.message)
        else:
            logger.info("Request rejected code=%s path=%s", exc.code, request.url.path)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(OperationalError)
    async def database_unavailable(request: Request, exc: OperationalError):
        response = _correlated(503, {"detail": "Database unavailable"})
        logger.error("Database error cid=%s path=%s: %s", response.headers[CORRELATION_HEADER], request.url.path, exc.orig)
        return response

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):  # noqa: BLE001
        response = _correlated(500, {"detail": "Internal server error"})
        logger.exception(
            "Unhandled error cid=%s path=%s method=%s",
            response.headers[CORRELATION_HEADER],
            request.url.path,
            request.method,
        )
        return response

    return app
