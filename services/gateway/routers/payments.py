from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, ValidationError

from services.auth.session import SERVICE, can_access_booking, resolve_session
from services.payments.confirmation import Confirmation, confirm_transaction, verify_and_confirm
from services.payments.errors import AccessDenied, AmountMismatch, GatewayRejected, PaymentError
from services.payments.paystack.service import signature_valid, transaction_from_payload

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckoutRequest(BaseModel):
    amount: Optional[float] = None
    email: str = ""
    reference: str = ""
    bookingId: str = ""


def _json(data: Any, status: int = 200) -> Response:
    return Response(content=json.dumps(data, ensure_ascii=False), status_code=status, media_type="application/json")


async def _payload(request: Request) -> dict:
    try:
        payload = await request.json()
    except Exception:
        payload = {}
    return payload if isinstance(payload, dict) else {}


def _schedule_receipt(request: Request, background_tasks: BackgroundTasks, result: Confirmation) -> None:
    # Replays already sent their receipt with the first confirmation.
    if result.replay:
        return
    background_tasks.add_task(request.app.state.receipts.dispatch, result.booking_id, result.amount, result.reference)


@router.post("/api/payments/paystack/verify")
async def verify_paystack_payment(request: Request, background_tasks: BackgroundTasks):
    state = request.app.state
    payload = await _payload(request)
    reference = str(payload.get("reference") or "").strip()
    if not reference:
        return _json({"error": "Missing reference"}, 400)

    try:
        session = await resolve_session(
            request.headers.get("authorization"),
            state.settings.service_bearer(),
            state.store,
        )
        result = await verify_and_confirm(reference, session, state.gateway, state.store, policy=state.policy)
    except (GatewayRejected, AmountMismatch) as e:
        return _json({"status": "failed", "message": e.message}, e.status_code)
    except AccessDenied:
        return _json({"error": "Access denied"}, 403)
    except PaymentError as e:
        logger.error("Verification of %s failed: %s", reference, e.message)
        return _json({"error": e.message}, e.status_code)
    except Exception as e:
        logger.exception("Verification of %s failed", reference)
        return _json({"error": str(e)}, 500)

    _schedule_receipt(request, background_tasks, result)
    return _json({"status": "verified", "bookingId": result.booking_id})


async def _ensure_pending_payment(store: Any, booking_id: str, amount: float) -> bool:
    """Create the pending paystack row for a booking; False when it is already paid."""
    if await store.first("payments", {"booking_id": booking_id, "method": "paystack", "status": "verified"}):
        return False
    if not await store.first("payments", {"booking_id": booking_id, "method": "paystack", "status": "pending"}):
        await store.insert(
            "payments",
            {"booking_id": booking_id, "amount": amount, "method": "paystack", "status": "pending"},
        )
    return True


@router.post("/api/payments/paystack/checkout")
async def create_paystack_checkout(request: Request):
    state = request.app.state
    try:
        req = CheckoutRequest.model_validate(await _payload(request))
    except ValidationError:
        return _json({"error": "Invalid checkout request"}, 400)

    email = req.email.strip()
    booking_id = req.bookingId.strip()
    if not req.amount or not email or not booking_id:
        return _json({"error": "Missing required fields"}, 400)
    if req.amount <= 0:
        return _json({"error": "Amount must be greater than 0."}, 400)
    amount = req.amount

    reference = req.reference.strip() or f"booking-{booking_id}-{int(time.time() * 1000)}"

    try:
        session = await resolve_session(
            request.headers.get("authorization"),
            state.settings.service_bearer(),
            state.store,
        )
        booking = await state.store.first("bookings", {"id": booking_id})
        if not booking:
            return _json({"error": "Booking not found"}, 404)
        if not can_access_booking(session, booking):
            logger.warning("Access denied: caller %s attempted checkout for booking %s", session.caller_id, booking_id)
            return _json({"error": "Access denied"}, 403)
        if not await _ensure_pending_payment(state.store, booking_id, amount):
            return _json({"error": "Booking is already paid"}, 409)

        data = await state.gateway.initialize_transaction(email, amount, reference, {"booking_id": booking_id})
    except Exception as e:
        logger.exception("Checkout for booking %s failed", booking_id)
        return _json({"error": str(e)}, 500)

    return _json({"authorization_url": data.get("authorization_url"), "reference": data.get("reference")})


@router.post("/api/payments/paystack/webhook")
async def paystack_webhook(request: Request, background_tasks: BackgroundTasks):
    state = request.app.state
    signature = request.headers.get("x-paystack-signature") or ""
    if not signature:
        return PlainTextResponse("No signature", status_code=401)

    raw_body = await request.body()
    if not signature_valid(state.settings.paystack_secret_key, raw_body, signature):
        logger.error("Invalid Paystack webhook signature")
        return PlainTextResponse("Invalid signature", status_code=401)

    try:
        event = json.loads(raw_body)
    except ValueError:
        return PlainTextResponse("Invalid JSON", status_code=400)

    if not isinstance(event, dict) or event.get("event") != "charge.success":
        return _json({"received": True})

    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    tx = transaction_from_payload(data)
    if not tx.booking_id:
        logger.error("No booking_id in webhook metadata for %s", tx.reference)
        return PlainTextResponse("No booking ID", status_code=400)

    try:
        result = await confirm_transaction(tx, SERVICE, state.store, policy=state.policy, source="webhook")
    except AmountMismatch:
        return PlainTextResponse("Amount mismatch", status_code=403)
    except PaymentError as e:
        logger.error("Webhook processing error for %s: %s", tx.reference, e.message)
        return PlainTextResponse(e.message, status_code=e.status_code)
    except Exception as e:
        logger.exception("Webhook processing error for %s", tx.reference)
        return PlainTextResponse(str(e), status_code=500)

    _schedule_receipt(request, background_tasks, result)
    return _json({"received": True})
