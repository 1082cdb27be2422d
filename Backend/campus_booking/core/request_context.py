"""
Request Context Resolution Module

This module is the SINGLE SOURCE OF TRUTH for who sent a request:
client IP and device metadata used for rate limiting, fingerprinting
and evidence logging.

IP RESOLUTION ORDER:
    1. cf-connecting-ip         (set by the CDN edge, not spoofable behind it)
    2. x-forwarded-for          (first entry = original client)
    3. x-real-ip
    4. x-vercel-forwarded-for   (first entry)
    5. "unknown"
"""

import logging
from dataclasses import dataclass
from typing import Mapping

from fastapi import Request

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"


@dataclass(frozen=True)
class RequestContext:
    """
    Resolved metadata for the inbound request.

    Attached to every evidence record so a human reviewer can correlate
    abuse attempts.
    """
    ip: str = UNKNOWN_IP
    user_agent: str = "unknown"
    referrer: str = "direct"
    path: str = "unknown"
    method: str = "unknown"

    def as_evidence(self) -> dict:
        return {
            "ip": self.ip,
            "user_agent": self.user_agent,
            "referrer": self.referrer,
            "path": self.path,
            "method": self.method,
        }


def _lower_keys(headers: Mapping[str, str]) -> dict[str, str]:
    # Starlette Headers.items() yields repeated names; the first one wins
    lowered: dict[str, str] = {}
    for key, value in headers.items():
        lowered.setdefault(key.lower(), value)
    return lowered


def _first_entry(value: str) -> str:
    return value.split(",")[0].strip()


def resolve_client_ip(headers: Mapping[str, str]) -> str:
    """
    Get the real client IP, even behind a CDN or reverse proxy.

    Accepts a Starlette ``Headers`` object or any plain mapping; header
    names are matched case-insensitively.
    """
    lowered = _lower_keys(headers)

    cf_ip = lowered.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    forwarded = lowered.get("x-forwarded-for")
    if forwarded:
        return _first_entry(forwarded)

    real_ip = lowered.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    vercel_ip = lowered.get("x-vercel-forwarded-for")
    if vercel_ip:
        return _first_entry(vercel_ip)

    return UNKNOWN_IP


def build_request_context(
    headers: Mapping[str, str],
    path: str | None = None,
    method: str | None = None,
) -> RequestContext:
    lowered = _lower_keys(headers)
    return RequestContext(
        ip=resolve_client_ip(lowered),
        user_agent=lowered.get("user-agent") or "unknown",
        referrer=lowered.get("referer") or lowered.get("referrer") or "direct",
        path=path or lowered.get("x-invoke-path") or "unknown",
        method=method or lowered.get("x-invoke-method") or "unknown",
    )


def resolve_request_context(request: Request) -> RequestContext:
    """Build the RequestContext for a FastAPI request."""
    ctx = build_request_context(
        request.headers,
        path=request.url.path,
        method=request.method,
    )
    logger.debug(f"Resolved request context: ip={ctx.ip} ua={ctx.user_agent[:60]}")
    return ctx


async def get_request_context(request: Request) -> RequestContext:
    """
    FastAPI dependency for getting request context.

        @router.post("/book")
        async def book(ctx: RequestContext = Depends(get_request_context)):
            ...
    """
    return resolve_request_context(request)
