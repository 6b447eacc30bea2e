# app/core/middleware.py
"""Request tracing middleware"""
import logging
import time
import uuid

from starlette.requests import Request

from app.utils.my_logging import correlation_id_var

logger = logging.getLogger(__name__)

# Load balancer probes would drown out real traffic
QUIET_PATHS = ("/health",)


def _incoming_correlation_id(request: Request) -> str:
    # Google webhook deliveries carry a per-channel message number instead
    channel_id = request.headers.get("X-Goog-Channel-ID")
    message_number = request.headers.get("X-Goog-Message-Number")
    if channel_id and message_number:
        return f"{channel_id}:{message_number}"
    return request.headers.get("X-Correlation-ID") or uuid.uuid4().hex


async def correlation_id_middleware(request: Request, call_next):
    correlation_id = _incoming_correlation_id(request)
    request.state.correlation_id = correlation_id
    reset_token = correlation_id_var.set(correlation_id)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(reset_token)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


async def request_logging_middleware(request: Request, call_next):
    """Log every request with its duration and status"""
    if request.url.path.startswith(QUIET_PATHS):
        return await call_next(request)

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(f"{request.method} {request.url.path} crashed")
        raise

    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)",
        extra={"status_code": response.status_code, "duration_ms": duration_ms},
    )
    return response
