"""
Custom middleware for request tracing and timing.
"""
import uuid
import time
import asyncio
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from fastapi import status
from fastapi.responses import JSONResponse
from csv_assistant.core.errors import ErrorCodes, get_error_response
from csv_assistant.core.performance import PerformanceMonitor

logger = logging.getLogger(__name__)


def _route_template(request: Request) -> str:
    """The matched route pattern, so that per-session paths share one metric."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Attach a correlation id to the request, its log records and the response."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        old_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            record.correlation_id = correlation_id
            return record

        logging.setLogRecordFactory(record_factory)
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {request.url.path} - {e} ({duration:.3f}s)",
                extra={"path": request.url.path, "duration": duration},
                exc_info=True
            )
            error_info = get_error_response(ErrorCodes.UNKNOWN_ERROR)
            error_info["correlation_id"] = correlation_id
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=error_info,
                headers={"X-Correlation-ID": correlation_id}
            )
        finally:
            logging.setLogRecordFactory(old_factory)

        duration = time.time() - start_time
        route = _route_template(request)
        PerformanceMonitor.record_metric(
            f"http {request.method} {route}",
            duration,
            {"status_code": response.status_code, "status": "error" if response.status_code >= 500 else "success"}
        )
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration:.3f}"
        logger.info(
            f"{request.method} {request.url.path} - {response.status_code} ({duration:.3f}s)",
            extra={
                "path": request.url.path,
                "status_code": response.status_code,
                "duration": duration,
                "session_id": request.path_params.get("session_id", "-"),
            }
        )
        return response


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed the configured timeout with a 504."""

    def __init__(self, app, timeout_seconds: float):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            correlation_id = getattr(request.state, 'correlation_id', 'unknown')
            logger.error(f"Request timeout after {self.timeout_seconds} seconds: {request.url.path}")
            error_info = get_error_response(ErrorCodes.TIMEOUT)
            error_info['correlation_id'] = correlation_id
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content=error_info,
                headers={"X-Correlation-ID": correlation_id}
            )
