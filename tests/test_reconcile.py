"""
Reconciliation sweeps: polling pending orders the webhook never settled.
"""
import pytest

from eventpass.model import Order, TicketType
from eventpass.reconcile import Reconciler, k_attempts


@pytest.fixture
def reconciler(store, gateway, lifecycle, kv):
    return Reconciler(store, gateway, lifecycle, kv, max_attempts=10,
                      min_age=60, max_age=86_400, check_delay=0)


async def test_unpaid_order_fails_on_tenth_check(store, reconciler, kv,
                                                 pending_order):
    now = pending_order.created_at + 120
    for n in range(1, 10):
        stats = await reconciler.sweep(now=now)
        assert stats.checked == 1
        assert stats.failed == 0
        assert await kv.get(k_attempts(pending_order.id)) == str(n)
    assert (await store.get(Order, pending_order.id)).status == "pending"

    stats = await reconciler.sweep(now=now)
    assert stats.failed == 1
    assert (await store.get(Order, pending_order.id)).status == "failed"
    assert await kv.get(k_attempts(pending_order.id)) is None

    stats = await reconciler.sweep(now=now)
    assert stats.checked == 0


async def test_paid_order_is_completed(store, reconciler, gateway, kv, event,
                                       pending_order):
    _, tt = event
    now = pending_order.created_at + 120
    await reconciler.sweep(now=now)
    assert await kv.get(k_attempts(pending_order.id)) == "1"

    gateway.mark_paid(pending_order.provider_reference, "pay_late")
    stats = await reconciler.sweep(now=now)
    assert stats.applied == 1
    order = await store.get(Order, pending_order.id)
    assert order.status == "completed"
    assert order.provider_payment_id == "pay_late"
    assert (await store.get(TicketType, tt.id)).available_quantity == 2
    assert await kv.get(k_attempts(pending_order.id)) is None


async def test_young_and_stale_orders_are_skipped(reconciler, gateway,
                                                  pending_order):
    too_young = await reconciler.sweep(now=pending_order.created_at + 5)
    too_old = await reconciler.sweep(now=pending_order.created_at + 90_000)
    assert too_young.checked == too_old.checked == 0
    assert gateway.checks == 0


async def test_gateway_errors_are_not_counted(store, reconciler, gateway, kv,
                                              pending_order):
    gateway.fail_check = True
    now = pending_order.created_at + 120
    for _ in range(12):
        stats = await reconciler.sweep(now=now)
        assert stats.errors == 1
    assert await kv.get(k_attempts(pending_order.id)) is None
    assert (await store.get(Order, pending_order.id)).status == "pending"


@pytest.mark.parametrize("gateway_status, final", [
    ("expired", "failed"),
    ("cancelled", "cancelled"),
])
async def test_closed_links(store, reconciler, gateway, pending_order,
                            gateway_status, final):
    gateway.statuses[pending_order.provider_reference] = {
        "status": gateway_status, "payment_id": None,
    }
    await reconciler.sweep(now=pending_order.created_at + 120)
    assert (await store.get(Order, pending_order.id)).status == final


async def test_orders_from_other_providers_are_ignored(store, reconciler,
                                                       pending_order):
    await store.update_where(Order, (Order.id == pending_order.id,),
                             {"provider_reference": "order_legacy_1"})
    stats = await reconciler.sweep(now=pending_order.created_at + 120)
    assert stats.checked == 0
