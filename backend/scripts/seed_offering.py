#!/usr/bin/env python3
"""
Create an active event with one ticket type for local runs and load tests.

    python -m scripts.seed_offering --capacity 10 --price 500

Prints the ticket type id to pass to the Locust scenario as TICKET_TYPE_ID.
"""

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from ticketpay.core.logging import get_logger, setup_logging
from ticketpay.db.base import Base
from ticketpay.db.session import AsyncSessionLocal, engine
from ticketpay.models.event import Event, TicketType

logger = get_logger(__name__)


async def seed(title: str, ticket_name: str, price: Decimal, capacity: int, create_schema: bool) -> int:
    if create_schema:
        # local SQLite runs without alembic
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        event = Event(
            title=title,
            venue="Nairobi",
            start_time=datetime.now(timezone.utc) + timedelta(days=30),
            is_active=True,
        )
        db.add(event)
        await db.flush()

        ticket_type = TicketType(
            event_id=event.id,
            name=ticket_name,
            price=price,
            capacity=capacity,
            available_quantity=capacity,
        )
        db.add(ticket_type)
        await db.commit()

        logger.info(
            "offering_seeded",
            event_id=event.id,
            ticket_type_id=ticket_type.id,
            capacity=capacity,
            price=str(price),
        )
        ticket_type_id = ticket_type.id

    await engine.dispose()
    return ticket_type_id


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Seed one event and ticket type")
    ap.add_argument("--title", default="Load Test Concert")
    ap.add_argument("--ticket-name", default="Regular")
    ap.add_argument("--price", type=Decimal, default=Decimal("500"))
    ap.add_argument("--capacity", type=int, default=10)
    ap.add_argument("--create-schema", action="store_true", help="create tables first (SQLite dev only)")
    args = ap.parse_args()

    setup_logging()
    ticket_type_id = asyncio.run(
        seed(args.title, args.ticket_name, args.price, args.capacity, args.create_schema)
    )
    print(ticket_type_id)
