"""
Booking Submission Pipeline

Decides, for one incoming booking attempt, whether to silently reject it,
silently block it, or accept and persist it.

STAGES (strict order, each awaited before the next):
    1. rate limit          5 requests / 60s per IP
    2. honeypot            any decoy field filled
    3. timing              form submitted in under 3 seconds
    4. validation          strict request model; failure is a 500
    5. blocklist (phone)   Do Not Book match on normalized phone
    6. blocklist (email)   Do Not Book match on normalized email
    7. client resolution   find by normalized phone, else create
    8. fingerprint         merge device record (only if supplied)
    9. appointment         create, bump client counter, log booking

Stages 1-3 read the raw payload, so incomplete bot submissions are still
filtered and counted. Every rejection in stages 1-3 and 5-6 is returned to
the caller as a success with a "fake-<epoch ms>" booking id and nothing
persisted except an evidence record. Only the pipeline boundary turns an
exception into the generic failure response.

KNOWN RACE:
    Two concurrent first-time bookings from the same phone can both miss
    the client lookup in stage 7 and create two Client rows. There is no
    unique constraint on clients.normalized_phone.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .client_records import (
    create_appointment,
    create_client,
    find_do_not_book_by_email,
    find_do_not_book_by_phone,
    get_client_by_phone,
    increment_client_bookings,
    record_booking_log,
    touch_returning_client,
    upsert_fingerprint,
)
from .core.config import Settings, get_settings
from .core.request_context import RequestContext
from .core.responses import GENERIC_FAILURE_MESSAGE, error_response, fake_booking_id, success_response
from .evidence import EvidenceLogger, EvidenceType
from .rate_limiter import RateLimiter
from .security import generate_fingerprint, is_honeypot_triggered, normalize_email, normalize_phone

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# Request Models
# ────────────────────────────────────────────────────────────────

class FingerprintData(BaseModel):
    """Device signals collected by the booking form."""
    model_config = ConfigDict(populate_by_name=True)

    screen_resolution: Optional[str] = Field(default=None, alias="screenResolution")
    timezone: Optional[str] = None
    language: Optional[str] = None
    platform: Optional[str] = None
    cookies_enabled: Optional[bool] = Field(default=None, alias="cookiesEnabled")
    do_not_track: Optional[str] = Field(default=None, alias="doNotTrack")


class BookingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    phone: str
    email: Optional[str] = None
    service: str
    barber: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM, 24h
    notes: Optional[str] = None
    time_on_page: float = Field(default=0, alias="timeOnPage")
    fingerprint: Optional[FingerprintData] = None


# Decoys, hidden from humans. Read from the raw payload, before validation.
DECOY_FIELDS = {
    "_hp_website": "website",
    "_hp_company": "company",
    "_hp_fax": "fax",
}


def honeypot_fields(raw: dict[str, Any]) -> dict[str, str]:
    fields = {}
    for wire_name, name in DECOY_FIELDS.items():
        value = raw.get(wire_name)
        # Non-string decoy values still count as filled
        fields[name] = "" if value is None else str(value)
    return fields


def raw_time_on_page(raw: dict[str, Any]) -> float:
    """Missing or non-numeric timer counts as an instant submission."""
    value = raw.get("timeOnPage")
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0
    return 0 if math.isnan(value) else value


# ────────────────────────────────────────────────────────────────
# Pipeline State
# ────────────────────────────────────────────────────────────────

class Decision(str, Enum):
    CONTINUE = "continue"
    REJECT = "reject"


@dataclass(frozen=True)
class StageResult:
    decision: Decision
    evidence_type: Optional[EvidenceType] = None
    evidence: dict[str, Any] = field(default_factory=dict)
    updates: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def proceed(cls, **updates: Any) -> "StageResult":
        return cls(decision=Decision.CONTINUE, updates=updates)

    @classmethod
    def reject(cls, evidence_type: EvidenceType, **evidence: Any) -> "StageResult":
        return cls(decision=Decision.REJECT, evidence_type=evidence_type, evidence=evidence)


@dataclass(frozen=True)
class BookingState:
    """
    Per-request data. Stages never mutate it; the runner derives a new one.

    ``request`` stays None until validate_stage has run; the filtering
    stages before it only read ``raw``.
    """
    raw: dict[str, Any]
    context: RequestContext
    now: datetime
    request: Optional[BookingRequest] = None
    normalized_phone: str = ""
    normalized_email: str = ""
    client_id: Optional[str] = None
    is_new_client: bool = False
    fingerprint_hash: Optional[str] = None
    appointment_id: Optional[str] = None

    @property
    def now_ms(self) -> int:
        return int(self.now.timestamp() * 1000)


@dataclass(frozen=True)
class BookingOutcome:
    success: bool
    booking_id: Optional[str] = None
    error: Optional[str] = None
    status_code: int = 200
    # Server-side only, never serialized to the caller
    filtered_by: Optional[EvidenceType] = None

    def to_response(self) -> JSONResponse:
        if self.success:
            return success_response(self.booking_id)
        return error_response(self.status_code)


Stage = Callable[["BookingPipeline", BookingState], Awaitable[StageResult]]


# ────────────────────────────────────────────────────────────────
# Filtering Stages
# ────────────────────────────────────────────────────────────────

async def rate_limit_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    allowed = pipeline.rate_limiter.check_rate_limit(
        state.context.ip,
        pipeline.settings.booking_rate_limit_max,
        pipeline.settings.booking_rate_limit_window_ms,
    )
    if not allowed:
        return StageResult.reject(EvidenceType.RATE_LIMIT, data=state.raw)
    return StageResult.proceed()


async def honeypot_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    result = is_honeypot_triggered(honeypot_fields(state.raw))
    if result.triggered:
        return StageResult.reject(
            EvidenceType.HONEYPOT,
            honeypot_field=result.field,
            honeypot_value=result.value,
            data=state.raw,
        )
    return StageResult.proceed()


async def timing_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    time_on_page = raw_time_on_page(state.raw)
    # Exactly the threshold passes
    if time_on_page < pipeline.settings.min_time_on_page_ms:
        return StageResult.reject(
            EvidenceType.TOO_FAST,
            time_on_page=time_on_page,
            data=state.raw,
        )
    return StageResult.proceed()


async def validate_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    # ValidationError propagates to the generic failure path
    return StageResult.proceed(request=BookingRequest.model_validate(state.raw))


async def blocklist_phone_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    normalized_phone = normalize_phone(state.request.phone)
    normalized_email = normalize_email(state.request.email)

    entry = await find_do_not_book_by_phone(pipeline.session, normalized_phone)
    if entry is not None:
        return StageResult.reject(
            EvidenceType.DNB_BLOCKED,
            reason="phone_match",
            dnb_id=entry.id,
            data={"name": state.request.name, "phone": state.request.phone},
        )
    return StageResult.proceed(
        normalized_phone=normalized_phone,
        normalized_email=normalized_email,
    )


async def blocklist_email_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    if not state.normalized_email:
        return StageResult.proceed()

    entry = await find_do_not_book_by_email(pipeline.session, state.normalized_email)
    if entry is not None:
        return StageResult.reject(
            EvidenceType.DNB_BLOCKED,
            reason="email_match",
            dnb_id=entry.id,
            data={"name": state.request.name, "email": state.request.email},
        )
    return StageResult.proceed()


# ────────────────────────────────────────────────────────────────
# Acceptance Stages
# ────────────────────────────────────────────────────────────────

async def resolve_client_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    req = state.request
    existing = await get_client_by_phone(pipeline.session, state.normalized_phone)

    if existing is not None:
        await touch_returning_client(pipeline.session, existing, req.name, req.email, state.now)
        return StageResult.proceed(client_id=existing.id, is_new_client=False)

    client = await create_client(pipeline.session, req.name, req.phone, req.email, state.now)
    logger.info(f"[BOOKING] New client {client.id}")
    return StageResult.proceed(client_id=client.id, is_new_client=True)


async def fingerprint_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    fp = state.request.fingerprint
    if fp is None:
        return StageResult.proceed()

    fp_hash = generate_fingerprint(
        user_agent=state.context.user_agent,
        accept_language=fp.language,
        screen_resolution=fp.screen_resolution,
        timezone=fp.timezone,
    )
    await upsert_fingerprint(
        pipeline.session,
        fp_hash,
        client_id=state.client_id,
        ip=state.context.ip,
        user_agent=state.context.user_agent,
        fingerprint=fp.model_dump(by_alias=True),
        now=state.now,
    )
    return StageResult.proceed(fingerprint_hash=fp_hash)


async def appointment_stage(pipeline: "BookingPipeline", state: BookingState) -> StageResult:
    req = state.request
    appointment = await create_appointment(
        pipeline.session,
        client_id=state.client_id,
        client_name=req.name,
        service=req.service,
        barber_id=req.barber,
        date=req.date,
        time=req.time,
        notes=req.notes or "",
        ip=state.context.ip,
        now=state.now,
    )
    await increment_client_bookings(pipeline.session, state.client_id)
    await record_booking_log(
        pipeline.session,
        appointment_id=appointment.id,
        client_id=state.client_id,
        is_new_client=state.is_new_client,
        ip=state.context.ip,
        now=state.now,
    )
    return StageResult.proceed(appointment_id=appointment.id)


BOOKING_STAGES: tuple[Stage, ...] = (
    rate_limit_stage,
    honeypot_stage,
    timing_stage,
    validate_stage,
    blocklist_phone_stage,
    blocklist_email_stage,
    resolve_client_stage,
    fingerprint_stage,
    appointment_stage,
)


# ────────────────────────────────────────────────────────────────
# Runner
# ────────────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingPipeline:
    def __init__(
        self,
        session: AsyncSession,
        rate_limiter: RateLimiter,
        evidence: EvidenceLogger,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
        stages: tuple[Stage, ...] = BOOKING_STAGES,
    ):
        self.session = session
        self.rate_limiter = rate_limiter
        self.evidence = evidence
        self.settings = settings or get_settings()
        self.clock = clock
        self.stages = stages

    async def handle(
        self,
        body: Union[bytes, str, dict[str, Any]],
        context: RequestContext,
    ) -> BookingOutcome:
        """
        Process one booking submission.

        Never raises: unexpected failures become the generic 500 outcome.
        """
        try:
            raw = body if isinstance(body, dict) else json.loads(body)
            if not isinstance(raw, dict):
                raise ValueError(f"Booking payload must be a JSON object, got {type(raw).__name__}")
            state = BookingState(raw=raw, context=context, now=self.clock())
            return await self.run(state)
        except Exception as exc:
            return await self.fail(exc, context)

    async def run(self, state: BookingState) -> BookingOutcome:
        for stage in self.stages:
            result = await stage(self, state)

            if result.decision is Decision.REJECT:
                logger.info(
                    f"[BOOKING] Filtered by {stage.__name__} "
                    f"({result.evidence_type.value}) ip={state.context.ip}"
                )
                await self.evidence.log(result.evidence_type, state.context, **result.evidence)
                return BookingOutcome(
                    success=True,
                    booking_id=fake_booking_id(state.now_ms),
                    filtered_by=result.evidence_type,
                )

            if result.updates:
                state = replace(state, **result.updates)

        await self.session.commit()
        logger.info(
            f"[BOOKING] Appointment {state.appointment_id} for client {state.client_id} "
            f"(new={state.is_new_client})"
        )
        return BookingOutcome(success=True, booking_id=state.appointment_id)

    async def fail(self, exc: Exception, context: RequestContext) -> BookingOutcome:
        logger.exception(f"Booking error: {exc}")

        try:
            await self.session.rollback()
        except Exception:
            logger.exception("Rollback after booking error failed")

        await self.evidence.log(EvidenceType.SERVER_ERROR, context, error=str(exc))

        return BookingOutcome(success=False, error=GENERIC_FAILURE_MESSAGE, status_code=500)
