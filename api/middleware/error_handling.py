from datetime import datetime, timezone

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import get_api_logger_safe
from core.utils.exceptions import (
    AccountNotFoundError,
    PermanentError,
    TradingDeskException,
    TransientError,
    UnknownInstrumentError,
)

logger = get_api_logger_safe("api.middleware.error_handling")


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Global error handling middleware"""

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except HTTPException as e:
            raise e
        except Exception as e:
            logger.error(
                "Unhandled API exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "path": request.url.path
                }
            )


def status_for(exc: TradingDeskException) -> int:
    if isinstance(exc, AccountNotFoundError):
        return 404
    if isinstance(exc, PermanentError):
        return 400
    if isinstance(exc, TransientError):
        return 502
    return 500


async def desk_exception_handler(request: Request, exc: TradingDeskException) -> JSONResponse:
    """Typed desk errors become ``{"error": message}`` with a matching status"""
    status_code = status_for(exc)
    content = {"error": exc.message}
    if isinstance(exc, UnknownInstrumentError):
        content["symbol"] = exc.symbol
    logger.warning("Request rejected", path=request.url.path, status=status_code,
                   error_type=type(exc).__name__, error=exc.message)
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TradingDeskException, desk_exception_handler)
