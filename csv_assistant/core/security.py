"""
Security headers and production configuration checks.
"""
import os
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

# JSON-only API: nothing is ever rendered or framed
DEFAULT_CSP = {
    "default-src": "'none'",
    "frame-ancestors": "'none'",
    "base-uri": "'none'",
    "form-action": "'none'",
}


def build_csp_header(csp_dict: dict) -> str:
    return "; ".join(f"{key} {value}" for key, value in csp_dict.items())


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add CSP, nosniff, frame and referrer headers to every response."""

    def __init__(self, app, csp_overrides: dict = None):
        super().__init__(app)
        csp = DEFAULT_CSP.copy()
        if csp_overrides:
            csp.update(csp_overrides)
        self.csp_header = build_csp_header(csp)

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["Content-Security-Policy"] = self.csp_header
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        return response


def validate_production_security():
    """
    Validate configuration when ENVIRONMENT is production.

    Raises:
        RuntimeError: no AI provider key, or sessions would live in process memory
    """
    env = os.getenv('ENVIRONMENT', 'development').lower()
    if env not in ('production', 'prod'):
        logger.info(f"Running in {env} mode - security validation skipped")
        return

    if not (os.getenv('GROQ_API_KEY') or os.getenv('GEMINI_API_KEY')):
        raise RuntimeError("GROQ_API_KEY or GEMINI_API_KEY is required in production.")

    if os.getenv('STORAGE_BACKEND', 'memory').lower() != 'redis':
        raise RuntimeError("STORAGE_BACKEND=redis is required in production so sessions survive restarts.")

    if 'localhost' in os.getenv('ALLOWED_ORIGINS', ''):
        logger.warning("ALLOWED_ORIGINS contains 'localhost' in production. Consider removing for security.")

    logger.info("Production security validation passed")
