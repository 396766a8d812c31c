from __future__ import annotations

from typing import Any, Dict, Optional


def _num(v: Any, default: float = 0.0) -> float:
    try:
        if v is None or v == "":
            return default
        return float(v)
    except (TypeError, ValueError):
        return default


def expected_amount(package: Dict[str, Any], agent: Optional[Dict[str, Any]] = None) -> float:
    """Amount a booking should settle for.

    No agent: the package price.
    Agent with a rate: "percentage" scales the price down, "fixed" subtracts it.
    Agent without a rate: the package's flat ``agent_discount`` is subtracted.
    Never below zero.
    """
    price = _num(package.get("price"))
    if not agent:
        return max(price, 0.0)

    rate = _num(agent.get("commission_rate"))
    if rate <= 0:
        return max(price - _num(package.get("agent_discount")), 0.0)

    kind = str(agent.get("commission_type") or "percentage").strip().lower()
    if kind == "fixed":
        return max(price - rate, 0.0)
    return max(price * (1 - rate / 100), 0.0)


def tolerance_for(expected: float, ratio: float = 0.01, minimum_unit: float = 0.01) -> float:
    return max(expected * ratio, minimum_unit)


def is_underpaid(paid: float, expected: float, ratio: float = 0.01, minimum_unit: float = 0.01) -> bool:
    # Overpayment is accepted; only a shortfall beyond the band is rejected.
    return paid < expected - tolerance_for(expected, ratio, minimum_unit)
