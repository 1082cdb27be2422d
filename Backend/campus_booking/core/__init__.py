"""
Core module - configuration, database, request context, and response formatting.
"""
from .config import get_settings
from .db import get_session, init_models, Base, engine, AsyncSessionLocal
from .request_context import (
    RequestContext,
    build_request_context,
    resolve_client_ip,
    resolve_request_context,
    get_request_context,
)
from .responses import (
    BookingResponse,
    GENERIC_FAILURE_MESSAGE,
    FAKE_BOOKING_PREFIX,
    fake_booking_id,
    success_response,
    error_response,
)

__all__ = [
    # Config
    "get_settings",
    # Database
    "get_session",
    "init_models",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Request Context
    "RequestContext",
    "build_request_context",
    "resolve_client_ip",
    "resolve_request_context",
    "get_request_context",
    # Responses
    "BookingResponse",
    "GENERIC_FAILURE_MESSAGE",
    "FAKE_BOOKING_PREFIX",
    "fake_booking_id",
    "success_response",
    "error_response",
]
