#!/usr/bin/env python3
"""
Add a phone number and/or email to the Do Not Book list.

Blocked identities still get a normal-looking confirmation from the
booking form; the attempt is only recorded in the evidence box.

Usage:
    cd Backend
    python scripts/add_do_not_book.py --phone "(517) 332-5353" --reason "3 no-shows"
    python scripts/add_do_not_book.py --email spam@example.com --name "Spam Bot"

Requirements:
    - Database connection (DATABASE_URL env var)
"""

import argparse
import asyncio
import logging
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from campus_booking.client_records import add_do_not_book_entry, find_do_not_book_by_email, find_do_not_book_by_phone
from campus_booking.core.db import AsyncSessionLocal, engine, init_models
from campus_booking.security import normalize_email, normalize_phone

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


async def add_entry(args: argparse.Namespace) -> bool:
    await init_models()

    async with AsyncSessionLocal() as session:
        async with session.begin():
            if args.phone:
                existing = await find_do_not_book_by_phone(session, normalize_phone(args.phone))
                if existing:
                    logger.warning(f"Phone already blocked (entry {existing.id}): {existing.reason}")
                    return False
            if args.email:
                existing = await find_do_not_book_by_email(session, normalize_email(args.email))
                if existing:
                    logger.warning(f"Email already blocked (entry {existing.id}): {existing.reason}")
                    return False

            entry = await add_do_not_book_entry(
                session,
                added_by=args.added_by,
                name=args.name,
                phone=args.phone,
                email=args.email,
                reason=args.reason,
            )
            logger.info(f"Added Do Not Book entry {entry.id}")

    await engine.dispose()
    return True


def main():
    parser = argparse.ArgumentParser(description="Add an entry to the Do Not Book list")
    parser.add_argument("--name", help="Client name")
    parser.add_argument("--phone", help="Phone number in any format")
    parser.add_argument("--email", help="Email address")
    parser.add_argument("--reason", default="", help="Why this client is blocked")
    parser.add_argument("--added-by", default="import-script", help="Who added the entry")
    args = parser.parse_args()

    if not args.phone and not args.email:
        parser.error("at least one of --phone or --email is required")

    success = asyncio.run(add_entry(args))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
