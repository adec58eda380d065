"""Middleware recording failed requests in the error_logs table.

5xx responses are stored as ERROR, 4xx (other than 401/403) as WARNING.
Unhandled exceptions are stored and turned into a JSON 500.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, Request, Response
from jose import JWTError, jwt as jose_jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from koperasi.config import settings
from koperasi.models.error_log import ErrorSeverity
from koperasi.services.error_logger import log_error_standalone

logger = logging.getLogger("koperasi.middleware")

_UNLOGGED_STATUS = (401, 403)


def _user_id_from_request(request: Request) -> Optional[int]:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        payload = jose_jwt.decode(
            auth_header[7:], settings.secret_key, algorithms=[settings.jwt_algorithm]
        )
        return int(payload.get("sub", 0)) or None
    except (JWTError, ValueError, TypeError):
        logger.debug("Bearer token on %s could not be decoded", request.url.path)
        return None


class ErrorCaptureMiddleware(BaseHTTPMiddleware):
    """Catches unhandled exceptions, returns 500, and persists the error."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        user_id = _user_id_from_request(request)

        try:
            response = await call_next(request)
        except HTTPException as exc:
            if exc.status_code < 500:
                raise
            response = None
            failure: Exception = exc
        except Exception as exc:
            response = None
            failure = exc

        if response is not None:
            code = response.status_code
            if code >= 400 and code not in _UNLOGGED_STATUS:
                await log_error_standalone(
                    Exception(f"HTTP {code} on {request.method} {request.url.path}"),
                    severity=ErrorSeverity.ERROR if code >= 500 else ErrorSeverity.WARNING,
                    module="middleware.error_capture",
                    function_name="dispatch",
                    request_method=request.method,
                    request_path=str(request.url.path),
                    status_code=code,
                    user_id=user_id,
                )
            return response

        severity = (
            ErrorSeverity.CRITICAL if "database" in str(failure).lower() else ErrorSeverity.ERROR
        )
        await log_error_standalone(
            failure,
            severity=severity,
            module="middleware.error_capture",
            request_method=request.method,
            request_path=str(request.url.path),
            status_code=500,
            user_id=user_id,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
