from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional


# Lowest to highest. A role satisfies every requirement at or below its rank.
ROLE_HIERARCHY = ("user", "agent", "moderator", "admin")


@dataclass(frozen=True)
class Session:
    user_id: Optional[str] = None
    roles: FrozenSet[str] = field(default_factory=frozenset)
    is_service: bool = False

    @property
    def authenticated(self) -> bool:
        return self.is_service or bool(self.user_id)

    @property
    def caller_id(self) -> str:
        if self.is_service:
            return "service"
        return self.user_id or "anonymous"


ANONYMOUS = Session()
SERVICE = Session(is_service=True)


def _rank(role: str) -> int:
    try:
        return ROLE_HIERARCHY.index(str(role or "").strip().lower())
    except ValueError:
        return -1


def has_role(roles: Iterable[str], required: str) -> bool:
    need = _rank(required)
    if need < 0:
        return False
    return any(_rank(r) >= need for r in roles or ())


def is_admin(session: Session) -> bool:
    return has_role(session.roles, "admin")


def can_access_booking(session: Session, booking: Dict[str, Any]) -> bool:
    if session.is_service:
        return True
    if not session.user_id:
        return False
    if str(booking.get("user_id") or "") == str(session.user_id):
        return True
    return is_admin(session)


def bearer_token(authorization: Optional[str]) -> str:
    raw = (authorization or "").strip()
    if raw[:7].lower() == "bearer ":
        return raw[7:].strip()
    return ""


async def resolve_session(authorization: Optional[str], service_bearer: str, store: Any) -> Session:
    """Turn an ``Authorization`` header into an explicit session.

    ``Bearer <service key>`` is the trusted internal caller; any other bearer
    token is looked up through the store's auth endpoint, with roles read
    from ``user_roles``. Anything else is anonymous.
    """
    header = (authorization or "").strip()
    if not header:
        return ANONYMOUS
    if service_bearer and hmac.compare_digest(header.encode("utf-8"), service_bearer.encode("utf-8")):
        return SERVICE

    token = bearer_token(header)
    user_id = await store.user_id_for_token(token) if token else None
    if not user_id:
        return ANONYMOUS

    rows = await store.select("user_roles", {"user_id": user_id})
    roles = frozenset(str(r.get("role") or "").strip().lower() for r in rows if r.get("role"))
    return Session(user_id=user_id, roles=roles or frozenset({"user"}))
