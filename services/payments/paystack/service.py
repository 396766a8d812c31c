from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.paystack.co"


@dataclass
class GatewayTransaction:
    reference: str
    status: str
    amount: float
    currency: str = "NGN"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def booking_id(self) -> str:
        return str(self.metadata.get("booking_id") or "").strip()


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


def from_minor_units(amount: Any) -> float:
    try:
        return int(amount or 0) / 100
    except (TypeError, ValueError):
        return 0.0


def transaction_from_payload(data: Dict[str, Any]) -> GatewayTransaction:
    """Normalize a Paystack transaction object (verify response or webhook ``data``)."""
    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    return GatewayTransaction(
        reference=str(data.get("reference") or ""),
        status=str(data.get("status") or "").strip().lower(),
        amount=from_minor_units(data.get("amount")),
        currency=str(data.get("currency") or "NGN"),
        metadata=metadata,
    )


def signature_valid(secret_key: str, raw_body: bytes, signature: str) -> bool:
    """Check ``x-paystack-signature``: hex HMAC-SHA512 of the raw body."""
    if not signature or not secret_key:
        return False
    expected = hmac.new(secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackClient:
    def __init__(
        self,
        secret_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout_s
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def verify_transaction(self, reference: str) -> Optional[GatewayTransaction]:
        """Look up a transaction by reference.

        Returns None when the gateway cannot be reached or does not answer
        with a usable payload; callers treat that as an unverified payment.
        """
        # Dot-only segments would still be resolved away by the URL parser.
        if not reference or not reference.strip("."):
            logger.warning("Refusing to look up malformed reference %r", reference)
            return None
        url = f"{self.base_url}/transaction/verify/{quote(reference, safe='')}"
        try:
            async with self._client() as client:
                r = await client.get(url, headers=self._headers())
            payload = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Paystack verify failed for %s: %s", reference, exc)
            return None

        if r.status_code != 200 or not isinstance(payload, dict) or not payload.get("status"):
            msg = payload.get("message") if isinstance(payload, dict) else ""
            logger.info("Paystack verify returned %s for %s: %s", r.status_code, reference, msg)
            return None
        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        tx = transaction_from_payload(data)
        if not tx.reference:
            tx.reference = reference
        return tx

    async def initialize_transaction(
        self,
        email: str,
        amount: float,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/transaction/initialize"
        body = {
            "email": email,
            "amount": to_minor_units(amount),
            "reference": reference,
            "metadata": metadata or {},
        }
        async with self._client() as client:
            r = await client.post(url, headers=self._headers(), json=body)
        try:
            payload = r.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict) or not payload.get("status"):
            msg = payload.get("message") if isinstance(payload, dict) else ""
            raise ValueError(msg or f"Paystack request failed ({r.status_code})")
        data = payload.get("data") or {}
        return {
            "authorization_url": data.get("authorization_url") or "",
            "access_code": data.get("access_code") or "",
            "reference": data.get("reference") or reference,
        }
