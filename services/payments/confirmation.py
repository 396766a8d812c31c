from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.auth.session import Session, can_access_booking
from services.payments.errors import (
    AccessDenied,
    AmountMismatch,
    BookingNotPayable,
    GatewayRejected,
    IntegrityFault,
)
from services.payments.paystack.service import GatewayTransaction
from services.payments.pricing import expected_amount, is_underpaid


logger = logging.getLogger(__name__)

CONFIRMED_STATES = ("confirmed", "completed")


def now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


@dataclass
class AmountPolicy:
    tolerance_ratio: float = 0.01
    minimum_unit: float = 0.01


@dataclass
class Confirmation:
    booking_id: str
    reference: str
    amount: float
    # True when an earlier call already applied the transition.
    replay: bool = False


async def _confirm_booking(store: Any, booking_id: str) -> List[Dict[str, Any]]:
    # Only a pending booking moves; confirmed or completed ones are left alone.
    return await store.update("bookings", {"status": "confirmed"}, {"id": booking_id, "status": "pending"})


async def _verified_payment(store: Any, booking_id: str, method: str) -> Optional[Dict[str, Any]]:
    return await store.first("payments", {"booking_id": booking_id, "method": method, "status": "verified"})


async def _record_activity(store: Any, booking: Dict[str, Any], tx: GatewayTransaction, method: str, source: str) -> None:
    try:
        await store.insert(
            "user_activity",
            {
                "user_id": booking.get("user_id"),
                "event_type": "payment_verified",
                "package_id": booking.get("package_id"),
                "booking_id": booking.get("id"),
                "metadata": {
                    "method": method,
                    "reference": tx.reference,
                    "amount": tx.amount,
                    "source": source,
                },
            },
        )
    except Exception:
        logger.exception("Could not record payment activity for booking %s", booking.get("id"))


async def confirm_transaction(
    tx: GatewayTransaction,
    session: Session,
    store: Any,
    policy: AmountPolicy | None = None,
    method: str = "paystack",
    source: str = "verify_endpoint",
) -> Confirmation:
    """Move a booking and its payment to their confirmed states exactly once.

    ``tx`` must already be a settled gateway transaction. Every write is a
    conditional update, so concurrent callers for the same booking converge:
    one applies the transition, the others observe it and report success.
    """
    policy = policy or AmountPolicy()

    booking_id = tx.booking_id
    if not booking_id:
        raise IntegrityFault("No booking ID in transaction metadata")

    booking = await store.first("bookings", {"id": booking_id})
    if not booking:
        raise IntegrityFault(f"Booking {booking_id} not found", booking_id=booking_id)

    if not can_access_booking(session, booking):
        logger.warning("Access denied: caller %s attempted to verify booking %s", session.caller_id, booking_id)
        raise AccessDenied(booking_id=booking_id, caller_id=session.caller_id)

    result = Confirmation(
        booking_id=booking_id,
        reference=tx.reference,
        amount=tx.amount,
        replay=True,
    )

    if booking.get("status") in CONFIRMED_STATES:
        logger.info("Booking %s already confirmed; reference %s is a replay", booking_id, tx.reference)
        return result

    status = str(booking.get("status") or "pending")
    if status != "pending":
        logger.warning("Booking %s is %s; refusing payment %s", booking_id, status, tx.reference)
        raise BookingNotPayable(booking_id, status)

    if await _verified_payment(store, booking_id, method):
        logger.info("Payment for booking %s already verified; ensuring confirmation", booking_id)
        await _confirm_booking(store, booking_id)
        return result

    package = await store.first("packages", {"id": booking.get("package_id")})
    if not package:
        raise IntegrityFault(f"Package for booking {booking_id} not found", booking_id=booking_id)

    agent = None
    agent_id = booking.get("agent_id")
    if agent_id:
        agent = await store.first("agents", {"id": agent_id})
        if not agent:
            logger.warning("Agent %s on booking %s not found; using package agent discount", agent_id, booking_id)
            agent = {"id": agent_id}

    expected = expected_amount(package, agent)
    if is_underpaid(tx.amount, expected, policy.tolerance_ratio, policy.minimum_unit):
        logger.warning(
            "FRAUD ALERT: amount mismatch for reference %s booking %s (expected %.2f, paid %.2f)",
            tx.reference,
            booking_id,
            expected,
            tx.amount,
        )
        raise AmountMismatch(booking_id, expected=expected, actual=tx.amount)

    pending = await store.first("payments", {"booking_id": booking_id, "method": method, "status": "pending"})
    updated = []
    if pending:
        updated = await store.update(
            "payments",
            {"status": "verified", "paystack_reference": tx.reference, "verified_at": now_iso()},
            {"id": pending.get("id"), "status": "pending"},
        )

    if not updated:
        # Lost the race to a concurrent writer, or checkout never created a row.
        if await _verified_payment(store, booking_id, method):
            await _confirm_booking(store, booking_id)
            return result
        raise IntegrityFault(f"No pending {method} payment for booking {booking_id}", booking_id=booking_id)

    if not await _confirm_booking(store, booking_id):
        current = await store.first("bookings", {"id": booking_id}) or {}
        status = str(current.get("status") or "missing")
        if status not in CONFIRMED_STATES:
            # Booking left pending while the payment was being verified; undo the payment write.
            await store.update(
                "payments",
                {"status": "pending", "paystack_reference": None, "verified_at": None},
                {"id": pending.get("id"), "status": "verified"},
            )
            logger.warning("Booking %s became %s during verification of %s", booking_id, status, tx.reference)
            raise BookingNotPayable(booking_id, status)

    await _record_activity(store, booking, tx, method, source)

    logger.info("Payment %s verified; booking %s confirmed (%s)", tx.reference, booking_id, source)
    result.replay = False
    return result


async def verify_and_confirm(
    reference: str,
    session: Session,
    gateway: Any,
    store: Any,
    policy: AmountPolicy | None = None,
) -> Confirmation:
    if not session.authenticated:
        logger.warning("Access denied: unauthenticated verification attempt for reference %s", reference)
        raise AccessDenied(caller_id=session.caller_id)

    tx = await gateway.verify_transaction(reference)
    if tx is None or not tx.succeeded:
        raise GatewayRejected("Payment not verified")
    return await confirm_transaction(tx, session, store, policy=policy)
