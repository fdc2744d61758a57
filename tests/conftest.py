"""
Shared fixtures.

Every test gets its own SQLite file, an in-memory key/value store, an
outbox notification channel and a scripted payment gateway, so nothing
leaves the process.
"""
import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="eventpass-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp}/server.db"
os.environ["PAYMENT_PROVIDER"] = "mock"
os.environ["KV_BACKEND"] = "memory"
os.environ["RECONCILE_ENABLED"] = "0"
os.environ["BOOKING_MODE"] = "chat"
os.environ["WHATSAPP_PHONE_NUMBER_ID"] = ""
os.environ["WHATSAPP_ACCESS_TOKEN"] = ""
os.environ["WHATSAPP_VERIFY_TOKEN"] = "verify-me"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "door-pass"
os.environ["MOCK_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"

import json  # noqa: E402
from datetime import date, timedelta  # noqa: E402
from typing import Dict  # noqa: E402

import pytest  # noqa: E402

from eventpass.conversation import ConversationEngine  # noqa: E402
from eventpass.errors import GatewayUnavailable  # noqa: E402
from eventpass.infra.sql import create_schema, make_async_engine  # noqa: E402
from eventpass.lifecycle import OrderLifecycle  # noqa: E402
from eventpass.messaging import LogChannel  # noqa: E402
from eventpass.model import Base, Order, Store  # noqa: E402
from eventpass.model.kv import MemoryKVStore  # noqa: E402
from eventpass.payments import PaymentAdapter  # noqa: E402
from eventpass.scanning import ScanEngine  # noqa: E402

EVENT_ID = 7
CUSTOMER_PHONE = "919876543210"


class FakeGateway(PaymentAdapter):
    """Scripted gateway: references are plink_test_<n>, status per ref."""

    def __init__(self):
        self.created = 0
        self.checks = 0
        self.fail_create = False
        self.fail_check = False
        self.statuses: Dict[str, Dict] = {}

    async def create_payment_request(self, amount, currency, reference,
                                     customer):
        if self.fail_create:
            raise GatewayUnavailable("fake", "down")
        self.created += 1
        ref = f"plink_test_{self.created}"
        return {"provider_reference": ref,
                "pay_url": f"https://pay.example/{ref}"}

    async def check_status(self, provider_reference):
        self.checks += 1
        if self.fail_check:
            raise GatewayUnavailable("fake", "timeout")
        return self.statuses.get(
            provider_reference, {"status": "pending", "payment_id": None}
        )

    def parse_notification(self, payload, headers):
        body = json.loads(payload)
        return {"event_type": body.get("event_type", "ignored"),
                "provider_reference": body.get("provider_reference"),
                "order_number": body.get("order_number"),
                "payment_id": body.get("payment_id"),
                "event_id": body.get("event_id")}

    def mark_paid(self, ref, payment_id="pay_test_1"):
        self.statuses[ref] = {"status": "paid", "payment_id": payment_id}


@pytest.fixture
async def store(tmp_path):
    engine, SessionAsync, _, gated = make_async_engine(
        f"sqlite:///{tmp_path}/test.db"
    )
    await create_schema(engine, Base.metadata)
    yield Store(SessionAsync, gated)
    await engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def channel():
    return LogChannel()


@pytest.fixture
def kv():
    return MemoryKVStore()


@pytest.fixture
def lifecycle(store, gateway, channel, kv):
    return OrderLifecycle(store, gateway, channel, kv)


@pytest.fixture
def scanner(store):
    return ScanEngine(store)


@pytest.fixture
def convo(store, lifecycle, channel, kv):
    return ConversationEngine(store, lifecycle, channel, kv,
                              booking_mode="chat",
                              base_url="https://tickets.example",
                              signup_form_url="https://tickets.example/form")


@pytest.fixture
async def event(store):
    """Event EVT-7 with a single ticket type of 3 seats."""
    ev, tickets = await store.create_event(
        {"id": EVENT_ID, "name": "Test Fest",
         "event_date": date.today() + timedelta(days=10),
         "event_time": "18:00", "venue": "Main Hall"},
        [{"name": "General", "price": 50_000, "total_quantity": 3}],
    )
    return ev, tickets[0]


@pytest.fixture
async def user(store):
    return await store.upsert_user(CUSTOMER_PHONE, "Asha Rao",
                                   "asha@example.com")


@pytest.fixture
async def pending_order(lifecycle, event, user):
    ev, tt = event
    handle = await lifecycle.create_order(user.id, ev.id, tt.id)
    return handle.order


@pytest.fixture
async def paid_order(store, lifecycle, pending_order):
    await lifecycle.apply_payment_success(pending_order.id, "pay_test_1")
    return await store.get(Order, pending_order.id)
