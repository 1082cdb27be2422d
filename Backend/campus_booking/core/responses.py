"""
Booking Response Module

The booking endpoint emits exactly two shapes:

    Success (real or filtered, indistinguishable to the caller):
        {"success": true, "bookingId": "<appointment id>" | "fake-<epoch ms>"}

    Failure (any unexpected error):
        {"success": false, "error": "Booking failed"}

No other shape is ever emitted.
"""

from typing import Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

GENERIC_FAILURE_MESSAGE = "Booking failed"
FAKE_BOOKING_PREFIX = "fake-"


class BookingResponse(BaseModel):
    """Wire model for the booking endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    booking_id: Optional[str] = Field(default=None, alias="bookingId")
    error: Optional[str] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def fake_booking_id(now_ms: int) -> str:
    return f"{FAKE_BOOKING_PREFIX}{now_ms}"


def success_response(booking_id: str) -> JSONResponse:
    body = BookingResponse(success=True, booking_id=booking_id)
    return JSONResponse(content=body.to_wire(), status_code=200)


def error_response(status_code: int = 500) -> JSONResponse:
    body = BookingResponse(success=False, error=GENERIC_FAILURE_MESSAGE)
    return JSONResponse(content=body.to_wire(), status_code=status_code)
