import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


class LoggingMiddleware(BaseHTTPMiddleware):
    """Structured request/response logging.

    The request id is bound into structlog's context for the duration of the
    request, so admission and scaling log lines carry it too. Credentials are
    redacted by the logging pipeline itself.
    """

    SKIP_PATHS = {"/health", "/metrics"}

    def __init__(self, app):
        super().__init__(app)
        self.logger = structlog.get_logger("request")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start_time = time.perf_counter()

        self.logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            query_params=dict(request.query_params),
            client_ip=request.client.host if request.client else "unknown",
            headers=dict(request.headers),
        )

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "Request failed",
                path=request.url.path,
                error_type=type(e).__name__,
                error_message=str(e),
                process_time=round(time.perf_counter() - start_time, 4),
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        completed = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "process_time": round(time.perf_counter() - start_time, 4),
        }
        if response.status_code >= 500:
            self.logger.error("Request completed with server error", **completed)
        elif response.status_code >= 400:
            self.logger.warning("Request completed with client error", **completed)
        else:
            self.logger.info("Request completed successfully", **completed)

        response.headers["X-Request-ID"] = request_id
        return response
