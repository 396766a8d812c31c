from __future__ import annotations

import copy
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from packages.features.bookings.json_store import JsonStore
from services.gateway.app import create_app
from services.gateway.settings import Settings
from services.payments.paystack.service import PaystackClient

SECRET_KEY = "sk_test_secret"
SERVICE_KEY = "service-role-key"

SEED = {
    "packages": [
        {"id": "pkg-umrah", "name": "Ramadan Umrah", "type": "umrah", "category": "standard",
         "price": 100000, "currency": "NGN", "agent_discount": 0},
        {"id": "pkg-hajj", "name": "Hajj Premium", "type": "hajj", "category": "premium",
         "price": 1000000, "currency": "NGN", "agent_discount": 50000},
    ],
    "agents": [
        {"id": "ag-pct", "user_id": "agent-user", "email": "agent@example.com",
         "business_name": "Barakah Travels", "commission_rate": 10, "commission_type": "percentage"},
        {"id": "ag-fixed", "user_id": "agent-user-2", "email": "fixed@example.com",
         "business_name": "Noor Tours", "commission_rate": 150000, "commission_type": "fixed"},
        {"id": "ag-norate", "user_id": "agent-user-3", "email": "norate@example.com",
         "business_name": "Safa Agency", "commission_rate": 0},
    ],
    "bookings": [
        {"id": "bk-1", "user_id": "user-1", "package_id": "pkg-umrah", "agent_id": None,
         "status": "pending", "reference": "RAU-0001", "full_name": "Amina Bello"},
        {"id": "bk-pct", "user_id": "user-1", "package_id": "pkg-hajj", "agent_id": "ag-pct",
         "status": "pending", "reference": "RAU-0002", "full_name": "Amina Bello"},
        {"id": "bk-fixed", "user_id": "user-1", "package_id": "pkg-hajj", "agent_id": "ag-fixed",
         "status": "pending", "reference": "RAU-0003", "full_name": "Amina Bello"},
        {"id": "bk-norate", "user_id": "user-1", "package_id": "pkg-hajj", "agent_id": "ag-norate",
         "status": "pending", "reference": "RAU-0004", "full_name": "Amina Bello"},
    ],
    "payments": [
        {"id": "pay-1", "booking_id": "bk-1", "amount": 100000, "method": "paystack", "status": "pending"},
        {"id": "pay-pct", "booking_id": "bk-pct", "amount": 900000, "method": "paystack", "status": "pending"},
        {"id": "pay-fixed", "booking_id": "bk-fixed", "amount": 850000, "method": "paystack", "status": "pending"},
        {"id": "pay-norate", "booking_id": "bk-norate", "amount": 950000, "method": "paystack", "status": "pending"},
    ],
    "user_activity": [],
    "user_roles": [
        {"user_id": "user-1", "role": "user"},
        {"user_id": "user-2", "role": "user"},
        {"user_id": "admin-1", "role": "admin"},
        {"user_id": "agent-user", "role": "agent"},
    ],
    "notifications": [],
    "profiles": [
        {"id": "user-1", "full_name": "Amina Bello", "email": "amina@example.com"},
    ],
    "auth_sessions": [
        {"access_token": "token-user-1", "user_id": "user-1"},
        {"access_token": "token-user-2", "user_id": "user-2"},
        {"access_token": "token-admin", "user_id": "admin-1"},
    ],
}


def paystack_tx(reference: str, booking_id: str | None, amount: float, status: str = "success") -> dict:
    metadata = {"booking_id": booking_id} if booking_id else {}
    return {
        "reference": reference,
        "status": status,
        "amount": int(round(amount * 100)),
        "currency": "NGN",
        "metadata": metadata,
    }


class RecordingReceipts:
    def __init__(self) -> None:
        self.calls = []

    async def dispatch(self, booking_id: str, amount: float, reference: str) -> bool:
        self.calls.append({"booking_id": booking_id, "amount": amount, "reference": reference})
        return True


class PaystackStub:
    """Mock transport answering verify/initialize like the Paystack API."""

    def __init__(self) -> None:
        self.transactions: dict = {}
        self.requests: list = []
        self.fail_network = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_network:
            raise httpx.ConnectError("gateway unreachable", request=request)
        path = request.url.path
        if path.startswith("/transaction/verify/"):
            ref = path.rsplit("/", 1)[-1]
            tx = self.transactions.get(ref)
            if tx is None:
                return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})
            return httpx.Response(200, json={"status": True, "message": "Verification successful", "data": tx})
        if path == "/transaction/initialize":
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{body['reference']}",
                        "access_code": "ac_123",
                        "reference": body["reference"],
                    },
                },
            )
        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def add(self, reference: str, booking_id: str | None, amount: float, status: str = "success") -> dict:
        tx = paystack_tx(reference, booking_id, amount, status)
        self.transactions[reference] = tx
        return tx


@pytest.fixture
def store(tmp_path):
    s = JsonStore(tmp_path / "bookings_db.json")
    s.path.write_text(json.dumps(copy.deepcopy(SEED), indent=2), encoding="utf-8")
    return s


@pytest.fixture
def rows(store):
    """Read a table straight from the JSON file."""

    def _rows(table: str, **filters) -> list:
        data = json.loads(store.path.read_text(encoding="utf-8"))
        out = data.get(table) or []
        return [r for r in out if all(r.get(k) == v for k, v in filters.items())]

    return _rows


@pytest.fixture
def patch_row(store):
    """Overwrite fields of one seeded row, bypassing the store API."""

    def _patch(table: str, row_id: str, **values) -> None:
        data = json.loads(store.path.read_text(encoding="utf-8"))
        for r in data[table]:
            if r.get("id") == row_id:
                r.update(values)
        store.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    return _patch


@pytest.fixture
def paystack():
    return PaystackStub()


@pytest.fixture
def receipts():
    return RecordingReceipts()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        paystack_secret_key=SECRET_KEY,
        supabase_service_role_key=SERVICE_KEY,
        data_dir=tmp_path,
        log_level="DEBUG",
    )


@pytest.fixture
def app(settings, store, paystack, receipts):
    gateway = PaystackClient(SECRET_KEY, transport=paystack.transport())
    return create_app(settings=settings, store=store, gateway=gateway, receipts=receipts)


@pytest.fixture
def client(app):
    return TestClient(app)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def as_user():
    return auth("token-user-1")


@pytest.fixture
def as_other_user():
    return auth("token-user-2")


@pytest.fixture
def as_admin():
    return auth("token-admin")


@pytest.fixture
def as_service():
    return auth(SERVICE_KEY)
