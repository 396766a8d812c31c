from __future__ import annotations

import os

import httpx


RESEND_URL = os.getenv("RESEND_API_URL") or "https://api.resend.com/emails"


async def send_email(
    to_email: str,
    subject: str,
    html: str,
    api_key: str,
    from_email: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[bool, str]:
    """Send an HTML email through the Resend API."""
    to_email = (to_email or "").strip()
    if not to_email:
        return False, "Missing recipient email"

    if not api_key:
        return False, "RESEND_API_KEY is missing"

    payload = {
        "from": from_email,
        "to": [to_email],
        "subject": subject,
        "html": html,
    }

    try:
        async with httpx.AsyncClient(timeout=15, transport=transport) as client:
            r = await client.post(
                RESEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            )
        if r.status_code in (200, 201):
            return True, "sent"
        return False, f"Resend returned {r.status_code}: {r.text}"
    except httpx.HTTPError as exc:
        return False, str(exc)
