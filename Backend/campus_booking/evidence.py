"""
Evidence Box

Append-only audit trail for filtered booking attempts and server errors.

Logging here is fire-and-forget: each record is written in its own
session so a rolled-back booking transaction cannot take the evidence
with it, and a failed write is logged locally and swallowed.
"""

import logging
from enum import Enum
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.db import AsyncSessionLocal
from .core.request_context import RequestContext
from .models import EvidenceRecord

logger = logging.getLogger(__name__)


class EvidenceType(str, Enum):
    RATE_LIMIT = "rate_limit"
    HONEYPOT = "honeypot"
    TOO_FAST = "too_fast"
    DNB_BLOCKED = "dnb_blocked"
    SERVER_ERROR = "server_error"


class EvidenceLogger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def log(
        self,
        evidence_type: EvidenceType,
        context: Optional[RequestContext] = None,
        **payload: Any,
    ) -> None:
        """Write one evidence record. Never raises."""
        ctx = context.as_evidence() if context else {}
        try:
            async with self.session_factory() as session:
                session.add(
                    EvidenceRecord(
                        type=evidence_type.value,
                        payload=payload,
                        **ctx,
                    )
                )
                await session.commit()
            logger.info(f"[EVIDENCE] {evidence_type.value} from {ctx.get('ip', 'unknown')}")
        except Exception:
            logger.exception(f"Failed to log evidence ({evidence_type.value})")


_evidence_logger = EvidenceLogger(AsyncSessionLocal)


def get_evidence_logger() -> EvidenceLogger:
    """FastAPI dependency for the evidence logger."""
    return _evidence_logger
