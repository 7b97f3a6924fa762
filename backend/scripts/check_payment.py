#!/usr/bin/env python3
"""
Print payments for support and callback debugging.

    python -m scripts.check_payment ws_CO_191220191020363925
    python -m scripts.check_payment            # 20 most recent

The reference may be a CheckoutRequestID (pending or failed payments) or an
M-Pesa receipt number (successful ones).
"""

import argparse
import asyncio
from typing import Optional

from sqlalchemy import select

from ticketpay.db.session import AsyncSessionLocal, engine
from ticketpay.models.booking import Booking
from ticketpay.models.payment import Payment

RECENT_LIMIT = 20


def _format(payment: Payment, booking: Booking) -> str:
    return (
        f"payment={payment.id} ref={payment.provider_ref} status={payment.status.value} "
        f"amount={payment.amount} phone={payment.phone_number} created={payment.created_at:%Y-%m-%d %H:%M:%S} "
        f"| booking={booking.id} user={booking.user_id} status={booking.status.value} "
        f"qty={booking.quantity} total={booking.total_amount}"
        + (f" | {payment.result_desc}" if payment.result_desc else "")
    )


async def main(reference: Optional[str]) -> int:
    stmt = select(Payment, Booking).join(Booking, Booking.id == Payment.booking_id)
    if reference:
        stmt = stmt.where(Payment.provider_ref == reference)
    stmt = stmt.order_by(Payment.created_at.desc(), Payment.id.desc()).limit(RECENT_LIMIT)

    async with AsyncSessionLocal() as db:
        rows = (await db.execute(stmt)).all()
    await engine.dispose()

    if not rows:
        print(f"No payment with reference {reference}" if reference else "No payments yet")
        return 1
    for payment, booking in rows:
        print(_format(payment, booking))
    return 0


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Look up payments by CheckoutRequestID or receipt")
    ap.add_argument("reference", nargs="?", help="CheckoutRequestID or M-Pesa receipt number")
    args = ap.parse_args()
    raise SystemExit(asyncio.run(main(args.reference)))
