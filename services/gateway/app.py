from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

# ------------------------------------------------------------
# Load .env from PROJECT ROOT
# ------------------------------------------------------------
load_dotenv(dotenv_path=Path(__file__).resolve().parents[2] / ".env")

from fastapi import FastAPI
from fastapi.responses import Response
from starlette.middleware.cors import CORSMiddleware

from packages.features.bookings.store import get_store_from_settings
from services.gateway.routers import notifications_router, payments_router
from services.gateway.settings import Settings, load_settings
from services.notifications.receipts import ReceiptDispatcher
from services.payments.confirmation import AmountPolicy
from services.payments.paystack.service import PaystackClient

BUILD_ID = "payments-verify-v1"

CORS_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", "x-paystack-signature"]

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, store=None, gateway=None, receipts=None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Raudah Payments Backend (API only)", version="1.0.0")
    app.state.settings = settings
    app.state.store = store if store is not None else get_store_from_settings(settings)
    app.state.gateway = gateway or PaystackClient(
        settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout_s=settings.gateway_timeout_s,
    )
    app.state.receipts = receipts or ReceiptDispatcher(settings.public_base_url, settings.service_bearer())
    app.state.policy = AmountPolicy(
        tolerance_ratio=settings.amount_tolerance_ratio,
        minimum_unit=settings.minimum_currency_unit,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=CORS_HEADERS,
    )

    # Routers
    app.include_router(payments_router)
    app.include_router(notifications_router)

    @app.on_event("startup")
    async def _startup_check():
        if settings.paystack_config_missing():
            logger.warning("PAYSTACK_SECRET_KEY is not configured; payment verification will fail.")
        if not settings.service_bearer():
            logger.warning("SUPABASE_SERVICE_ROLE_KEY is not configured; internal callers cannot authenticate.")

    @app.on_event("shutdown")
    async def _close_store():
        await app.state.store.aclose()

    @app.options("/{path:path}")
    async def preflight(path: str):
        return Response(status_code=200)

    @app.get("/__build")
    async def build():
        return {"build": BUILD_ID, "store": app.state.store.backend}

    @app.get("/health")
    async def health():
        ok = not settings.paystack_config_missing()
        return {
            "ok": ok,
            "build": BUILD_ID,
            "paystack_configured": ok,
            "store": app.state.store.backend,
        }

    return app


app = create_app()
