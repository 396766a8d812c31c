from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel, ValidationError

from services.auth.session import can_access_booking, resolve_session
from services.notifications.receipts import RECEIPT_PATH, ReceiptError, send_payment_receipt

logger = logging.getLogger(__name__)

router = APIRouter()


class ReceiptRequest(BaseModel):
    bookingId: str = ""
    paymentAmount: Optional[float] = None
    reference: str = ""


def _json(data: Any, status: int = 200) -> Response:
    return Response(content=json.dumps(data, ensure_ascii=False), status_code=status, media_type="application/json")


@router.post(RECEIPT_PATH)
async def notify_payment_receipt(request: Request):
    state = request.app.state
    session = await resolve_session(
        request.headers.get("authorization"),
        state.settings.service_bearer(),
        state.store,
    )
    if not session.authenticated:
        return _json({"error": "Unauthorized"}, 401)

    try:
        payload = await request.json()
    except Exception:
        payload = {}
    try:
        req = ReceiptRequest.model_validate(payload if isinstance(payload, dict) else {})
    except ValidationError:
        return _json({"error": "Invalid receipt request"}, 400)

    booking_id = req.bookingId.strip()
    if not booking_id:
        return _json({"error": "Missing bookingId"}, 400)

    booking = await state.store.first("bookings", {"id": booking_id})
    if booking and not can_access_booking(session, booking):
        logger.warning("Access denied: caller %s requested receipt for booking %s", session.caller_id, booking_id)
        return _json({"error": "Access denied"}, 403)

    try:
        result = await send_payment_receipt(
            state.store,
            booking_id,
            req.paymentAmount,
            req.reference,
            resend_api_key=state.settings.resend_api_key,
            from_email=state.settings.receipt_from_email,
        )
    except ReceiptError as e:
        return _json({"error": str(e)}, 500)
    except Exception as e:
        logger.exception("Receipt for booking %s failed", booking_id)
        return _json({"error": str(e)}, 500)
    return _json(result)
