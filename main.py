import sys
import logging
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from csv_assistant.api.routes import router
from csv_assistant.api.metrics import router as metrics_router
from csv_assistant.core.config import get_settings
from csv_assistant.core.errors import ErrorCodes, get_error_response
from csv_assistant.core.logging import configure_logging
from csv_assistant.core.middleware import CorrelationIDMiddleware, TimeoutMiddleware
from csv_assistant.core.security import SecurityHeadersMiddleware, validate_production_security

load_dotenv()

try:
    settings = get_settings()
except ValueError as e:
    logging.basicConfig(level=logging.ERROR)
    logging.getLogger(__name__).error(f"Failed to load configuration: {e}")
    sys.exit(1)

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="CSV AI Assistant API",
    description="AI-driven analysis sessions over uploaded CSV and Excel files",
    version="1.0.0"
)

# Routes read these to build per-request rate limits
app.state.limiter = limiter
app.state.settings = settings


def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded with structured error response."""
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    error_info = get_error_response(ErrorCodes.RATE_LIMIT_EXCEEDED)
    error_info['correlation_id'] = correlation_id
    return JSONResponse(
        status_code=429,
        content=error_info,
        headers={
            "Retry-After": str(getattr(exc, 'retry_after', 60)),
            "X-Correlation-ID": correlation_id
        }
    )


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# Last added runs first
app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"]
)
app.add_middleware(CorrelationIDMiddleware)

validate_production_security()

logger.info(f"CORS allowed origins: {settings.allowed_origins_list}")
logger.info(f"AI providers in order: {settings.provider_order}")

app.include_router(router, prefix="/api")
app.include_router(metrics_router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "CSV AI Assistant API is running"}


logger.info("Application started successfully")
