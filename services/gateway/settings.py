from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[2]


def _float_env(name: str, default: float) -> float:
    try:
        raw = (os.getenv(name) or "").strip()
        return float(raw) if raw else default
    except ValueError:
        return default


@dataclass
class Settings:
    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    gateway_timeout_s: float = 8.0
    amount_tolerance_ratio: float = 0.01
    minimum_currency_unit: float = 0.01
    store_backend: str = "json"
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    data_dir: Path = ROOT_DIR / "data"
    public_base_url: str = "http://127.0.0.1:8000"
    resend_api_key: str = ""
    receipt_from_email: str = "Raudah Travels <receipts@raudah.travel>"
    log_level: str = "INFO"

    def paystack_config_missing(self) -> bool:
        return not self.paystack_secret_key

    def service_bearer(self) -> str:
        if not self.supabase_service_role_key:
            return ""
        return f"Bearer {self.supabase_service_role_key}"


def load_settings() -> Settings:
    """Build settings from the environment.

    Supported env vars:
      - Gateway: PAYSTACK_SECRET_KEY, PAYSTACK_BASE_URL, GATEWAY_TIMEOUT_SECONDS
      - Amount policy: AMOUNT_TOLERANCE_RATIO, MINIMUM_CURRENCY_UNIT
      - Store: STORE_BACKEND (supabase | json), SUPABASE_URL,
        SUPABASE_SERVICE_ROLE_KEY, SUPABASE_ANON_KEY, DATA_DIR
      - Receipts: PUBLIC_BASE_URL, RESEND_API_KEY, RECEIPT_FROM_EMAIL
    """
    supabase_url = (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")
    backend = (os.getenv("STORE_BACKEND") or "").strip().lower()
    if backend not in ("supabase", "json"):
        backend = "supabase" if supabase_url else "json"

    data_dir = (os.getenv("DATA_DIR") or "").strip()
    defaults = Settings()

    return Settings(
        paystack_secret_key=(os.getenv("PAYSTACK_SECRET_KEY") or "").strip(),
        paystack_base_url=(os.getenv("PAYSTACK_BASE_URL") or defaults.paystack_base_url).strip().rstrip("/"),
        gateway_timeout_s=_float_env("GATEWAY_TIMEOUT_SECONDS", defaults.gateway_timeout_s),
        amount_tolerance_ratio=_float_env("AMOUNT_TOLERANCE_RATIO", defaults.amount_tolerance_ratio),
        minimum_currency_unit=_float_env("MINIMUM_CURRENCY_UNIT", defaults.minimum_currency_unit),
        store_backend=backend,
        supabase_url=supabase_url,
        supabase_service_role_key=(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip(),
        supabase_anon_key=(os.getenv("SUPABASE_ANON_KEY") or "").strip(),
        data_dir=Path(data_dir) if data_dir else defaults.data_dir,
        public_base_url=(os.getenv("PUBLIC_BASE_URL") or defaults.public_base_url).strip().rstrip("/"),
        resend_api_key=(os.getenv("RESEND_API_KEY") or "").strip(),
        receipt_from_email=(os.getenv("RECEIPT_FROM_EMAIL") or defaults.receipt_from_email).strip(),
        log_level=(os.getenv("LOG_LEVEL") or defaults.log_level).strip().upper(),
    )
