from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from services.notifications.email.service import send_email


logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
RECEIPT_PATH = "/api/notify/payment-receipt"

_env = Environment(loader=FileSystemLoader(str(TEMPLATES_DIR)), autoescape=select_autoescape(["html"]))


class ReceiptError(Exception):
    pass


def format_amount(amount: float, currency: str = "NGN") -> str:
    return f"{currency or 'NGN'} {float(amount or 0):,.2f}"


def render_receipt(context: Dict[str, Any]) -> str:
    return _env.get_template("payment_receipt.html").render(**context)


async def send_payment_receipt(
    store: Any,
    booking_id: str,
    payment_amount: Optional[float],
    reference: str,
    resend_api_key: str = "",
    from_email: str = "",
    email_transport: httpx.AsyncBaseTransport | None = None,
) -> Dict[str, Any]:
    """In-app notifications for pilgrim (and agent) plus the receipt email."""
    booking = await store.first("bookings", {"id": booking_id})
    if not booking:
        raise ReceiptError("Booking not found")

    package = await store.first("packages", {"id": booking.get("package_id")}) or {}
    profile = await store.first("profiles", {"id": booking.get("user_id")}) or {}

    user_name = profile.get("full_name") or booking.get("full_name") or "Valued Customer"
    currency = package.get("currency") or "NGN"
    amount = format_amount(payment_amount or package.get("price") or 0, currency)
    package_name = package.get("name") or "your package"

    results = []
    try:
        await store.insert(
            "notifications",
            {
                "user_id": booking.get("user_id"),
                "title": "Payment Verified",
                "message": f"Your payment of {amount} for {package_name} has been verified.",
                "type": "success",
                "link": "/dashboard/bookings",
            },
        )
        results.append({"type": "pilgrim", "success": True})
    except Exception:
        logger.exception("Pilgrim notification failed for booking %s", booking_id)
        results.append({"type": "pilgrim", "success": False})

    if booking.get("agent_id"):
        agent = await store.first("agents", {"id": booking.get("agent_id")}) or {}
        if agent.get("user_id"):
            try:
                await store.insert(
                    "notifications",
                    {
                        "user_id": agent.get("user_id"),
                        "title": "Client Payment Verified",
                        "message": f"Payment of {amount} for client {user_name} has been verified.",
                        "type": "success",
                        "link": "/agent/bookings",
                    },
                )
                results.append({"type": "agent", "success": True})
            except Exception:
                logger.exception("Agent notification failed for booking %s", booking_id)
                results.append({"type": "agent", "success": False})

    booking_ref = booking.get("reference") or booking_id
    html = render_receipt(
        {
            "booking_ref": booking_ref,
            "user_name": user_name,
            "package_name": package.get("name") or "N/A",
            "package_type": str(package.get("type") or "N/A").capitalize(),
            "package_category": str(package.get("category") or "Standard").capitalize(),
            "payment_date": date.today().strftime("%d %B %Y"),
            "reference": reference,
            "amount": amount,
        }
    )

    email = profile.get("email") or ""
    if email:
        sent, msg = await send_email(
            email,
            f"Payment Receipt - {booking_ref}",
            html,
            api_key=resend_api_key,
            from_email=from_email,
            transport=email_transport,
        )
        if not sent:
            logger.warning("Receipt email for booking %s not sent: %s", booking_id, msg)
    else:
        sent = False
        logger.warning("User email not found for booking %s", booking_id)

    return {"success": True, "notifications": results, "email_sent": sent}


class ReceiptDispatcher:
    """Best-effort call to the receipt handler. Never raises."""

    def __init__(
        self,
        base_url: str,
        service_bearer: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = base_url.rstrip("/") + RECEIPT_PATH
        self.service_bearer = service_bearer
        self.timeout = timeout_s
        self.transport = transport

    async def dispatch(self, booking_id: str, amount: float, reference: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(
                    self.url,
                    json={"bookingId": booking_id, "paymentAmount": amount, "reference": reference},
                    headers={"Authorization": self.service_bearer, "Content-Type": "application/json"},
                )
            if r.status_code >= 400:
                logger.error("Receipt handler returned %s for booking %s: %s", r.status_code, booking_id, r.text)
                return False
            return True
        except Exception:
            logger.exception("Failed to send receipt for booking %s", booking_id)
            return False
