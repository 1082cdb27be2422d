"""
Public booking endpoint used by the website's booking form.

POST /api/book
    200 {"success": true, "bookingId": "..."}     real or filtered booking
    500 {"success": false, "error": "Booking failed"}
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .booking_pipeline import BookingPipeline
from .core.config import get_settings
from .core.db import get_session
from .core.request_context import RequestContext, get_request_context
from .evidence import EvidenceLogger, get_evidence_logger
from .rate_limiter import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["booking"])


@router.post("/book")
async def submit_booking(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
    limiter: RateLimiter = Depends(get_rate_limiter),
    evidence: EvidenceLogger = Depends(get_evidence_logger),
) -> JSONResponse:
    # Raw body: a JSON decode error must go through the pipeline's error path
    body = await request.body()

    pipeline = BookingPipeline(session, limiter, evidence, settings=get_settings())
    outcome = await pipeline.handle(body, ctx)
    return outcome.to_response()
