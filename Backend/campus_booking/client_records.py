from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Appointment,
    AppointmentStatus,
    BookingLog,
    Client,
    ClientPublic,
    DoNotBookEntry,
    Fingerprint,
    utcnow,
)
from .security import normalize_email, normalize_phone


# ────────────────────────────────────────────────────────────────
# Do Not Book list
# ────────────────────────────────────────────────────────────────

async def find_do_not_book_by_phone(
    session: AsyncSession, normalized_phone: str
) -> DoNotBookEntry | None:
    result = await session.execute(
        select(DoNotBookEntry)
        .where(DoNotBookEntry.normalized_phone == normalized_phone)
        .limit(1)
    )
    return result.scalars().first()


async def find_do_not_book_by_email(
    session: AsyncSession, normalized_email: str
) -> DoNotBookEntry | None:
    result = await session.execute(
        select(DoNotBookEntry)
        .where(DoNotBookEntry.normalized_email == normalized_email)
        .limit(1)
    )
    return result.scalars().first()


async def add_do_not_book_entry(
    session: AsyncSession,
    *,
    added_by: str,
    name: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    reason: str = "",
) -> DoNotBookEntry:
    """Admin/import-time write. The booking flow only ever reads this table."""
    entry = DoNotBookEntry(
        name=name,
        phone=phone,
        normalized_phone=normalize_phone(phone) or None,
        email=email,
        normalized_email=normalize_email(email) or None,
        reason=reason,
        added_by=added_by,
    )
    session.add(entry)
    await session.flush()
    return entry


# ────────────────────────────────────────────────────────────────
# Clients
# ────────────────────────────────────────────────────────────────

async def get_client_by_phone(session: AsyncSession, normalized_phone: str) -> Client | None:
    result = await session.execute(
        select(Client).where(Client.normalized_phone == normalized_phone).limit(1)
    )
    return result.scalars().first()


async def touch_returning_client(
    session: AsyncSession,
    client: Client,
    name: str,
    email: str | None,
    now: datetime,
) -> None:
    """Latest submission wins for name (public twin too); email only if one was supplied."""
    values: dict[str, Any] = {"last_visit": now, "name": name}
    if email:
        values["email"] = email
        values["normalized_email"] = normalize_email(email)
    await session.execute(update(Client).where(Client.id == client.id).values(**values))
    await session.execute(
        update(ClientPublic).where(ClientPublic.id == client.id).values(name=name, last_visit=now)
    )


async def create_client(
    session: AsyncSession,
    name: str,
    phone: str,
    email: str | None,
    now: datetime,
) -> Client:
    """Create a Client and its redacted ClientPublic twin in one flush."""
    client = Client(
        name=name,
        phone=phone,
        normalized_phone=normalize_phone(phone),
        email=email or None,
        normalized_email=normalize_email(email) or None,
        verified=False,
        bookings=0,
        completed=0,
        no_shows=0,
        cancellations=0,
        notes="",
        created_at=now,
        last_visit=now,
    )
    session.add(client)
    await session.flush()

    session.add(ClientPublic(id=client.id, name=name, last_visit=now))
    await session.flush()
    return client


async def increment_client_bookings(session: AsyncSession, client_id: str) -> None:
    # Single UPDATE so concurrent bookings for one client cannot under-count
    await session.execute(
        update(Client).where(Client.id == client_id).values(bookings=Client.bookings + 1)
    )


# ────────────────────────────────────────────────────────────────
# Fingerprints
# ────────────────────────────────────────────────────────────────

async def upsert_fingerprint(
    session: AsyncSession,
    fp_hash: str,
    *,
    client_id: str,
    ip: str,
    user_agent: str,
    fingerprint: dict[str, Any],
    now: datetime,
) -> Fingerprint:
    """Merge by hash: supplied fields overlay, everything else is kept."""
    record = await session.get(Fingerprint, fp_hash)
    if record is None:
        record = Fingerprint(hash=fp_hash, created_at=now)
        session.add(record)

    record.client_id = client_id
    record.ip = ip
    record.user_agent = user_agent
    record.fingerprint = {**(record.fingerprint or {}), **fingerprint}
    record.last_seen = now
    await session.flush()
    return record


# ────────────────────────────────────────────────────────────────
# Appointments
# ────────────────────────────────────────────────────────────────

async def create_appointment(
    session: AsyncSession,
    *,
    client_id: str,
    client_name: str,
    service: str,
    barber_id: str,
    date: str,
    time: str,
    notes: str,
    ip: str,
    now: datetime | None = None,
) -> Appointment:
    appointment = Appointment(
        client_id=client_id,
        client_name=client_name,
        service=service,
        barber_id=barber_id,
        date=date,
        time=time,
        notes=notes,
        status=AppointmentStatus.CONFIRMED,
        created_at=now or utcnow(),
        created_via="website",
        ip=ip,
    )
    session.add(appointment)
    await session.flush()
    return appointment


async def record_booking_log(
    session: AsyncSession,
    *,
    appointment_id: str,
    client_id: str,
    is_new_client: bool,
    ip: str,
    now: datetime,
) -> None:
    session.add(
        BookingLog(
            appointment_id=appointment_id,
            client_id=client_id,
            is_new_client=is_new_client,
            ip=ip,
            timestamp=now,
        )
    )
    await session.flush()
