"""
Order lifecycle: creation, exactly-once settlement and demotion.
"""
import asyncio
import json

import pytest

from eventpass.errors import ErrorKind, Failure, GatewayUnavailable
from eventpass.lifecycle import OrderHandle, OrderLifecycle, Outcome
from eventpass.messaging import LogChannel
from eventpass.model import Order, TicketType


async def test_create_then_pay(store, lifecycle, gateway, event, user):
    """A new order is pending and does not touch inventory until paid."""
    ev, tt = event
    handle = await lifecycle.create_order(user.id, ev.id, tt.id)
    assert isinstance(handle, OrderHandle)
    assert handle.order.status == "pending"
    assert handle.order.amount == 50_000
    assert handle.pay_url.startswith("https://pay.example/plink_test_")
    assert (await store.get(TicketType, tt.id)).available_quantity == 3

    result = await lifecycle.apply_payment_success(handle.order.id, "pay_1")
    assert result.outcome is Outcome.APPLIED

    order = await store.get(Order, handle.order.id)
    assert order.status == "completed"
    assert order.provider_payment_id == "pay_1"
    assert order.paid_at is not None
    assert json.loads(order.qr_payload)["orderNumber"] == order.order_number
    assert (await store.get(TicketType, tt.id)).available_quantity == 2


async def test_second_success_is_a_noop(store, lifecycle, event,
                                        pending_order):
    _, tt = event
    first = await lifecycle.apply_payment_success(pending_order.id, "pay_1")
    second = await lifecycle.apply_payment_success(pending_order.id, "pay_2")
    assert first.outcome is Outcome.APPLIED
    assert second.outcome is Outcome.ALREADY_COMPLETED

    order = await store.get(Order, pending_order.id)
    assert order.provider_payment_id == "pay_1"
    assert (await store.get(TicketType, tt.id)).available_quantity == 2


async def test_concurrent_success_signals_apply_once(store, lifecycle, event,
                                                     pending_order):
    _, tt = event
    results = await asyncio.gather(*[
        lifecycle.apply_payment_success(pending_order.id, f"pay_{i}")
        for i in range(5)
    ])
    applied = [r for r in results if r.outcome is Outcome.APPLIED]
    assert len(applied) == 1
    assert all(r.outcome in (Outcome.APPLIED, Outcome.ALREADY_COMPLETED)
               for r in results)
    assert (await store.get(TicketType, tt.id)).available_quantity == 2


async def test_unknown_order(lifecycle):
    result = await lifecycle.apply_payment_success(9999, "pay_1")
    assert result.outcome is Outcome.NOT_FOUND
    assert result.order is None


async def test_sold_out_creates_nothing(store, lifecycle, gateway, event,
                                        user):
    ev, tt = event
    await store.update_where(TicketType, (TicketType.id == tt.id,),
                             {"available_quantity": 0})
    result = await lifecycle.create_order(user.id, ev.id, tt.id)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.INVENTORY_EXHAUSTED
    assert gateway.created == 0
    assert await store.query(Order) == []


async def test_gateway_failure_leaves_no_order(store, lifecycle, gateway,
                                               event, user):
    ev, tt = event
    gateway.fail_create = True
    with pytest.raises(GatewayUnavailable):
        await lifecycle.create_order(user.id, ev.id, tt.id)
    assert await store.query(Order) == []


async def test_ticket_type_must_belong_to_event(lifecycle, event, user):
    _, tt = event
    result = await lifecycle.create_order(user.id, 12345, tt.id)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.NOT_FOUND


async def test_non_positive_price_rejected(store, lifecycle, event, user):
    ev, tt = event
    await store.update_where(TicketType, (TicketType.id == tt.id,),
                             {"price": 0})
    result = await lifecycle.create_order(user.id, ev.id, tt.id)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.INVALID_INPUT


async def test_session_token_reuses_order(store, lifecycle, gateway, event,
                                          user):
    ev, tt = event
    first = await lifecycle.create_order(user.id, ev.id, tt.id,
                                         session_token="session_1")
    again = await lifecycle.create_order(user.id, ev.id, tt.id,
                                         session_token="session_1")
    assert again.order.id == first.order.id
    assert again.created is False
    assert again.pay_url == first.pay_url
    assert gateway.created == 1
    assert len(await store.query(Order)) == 1


async def test_concurrent_creates_with_one_token(store, lifecycle, gateway,
                                                 event, user):
    ev, tt = event
    handles = await asyncio.gather(*[
        lifecycle.create_order(user.id, ev.id, tt.id,
                               session_token="session_race")
        for _ in range(3)
    ])
    assert len({h.order.id for h in handles}) == 1
    assert len(await store.query(Order)) == 1
    assert gateway.created == 1


async def test_ticket_is_sent_after_payment(channel, lifecycle, user,
                                            pending_order):
    await lifecycle.apply_payment_success(pending_order.id, "pay_1")
    kinds = [s.kind for s in channel.sent_to(user.phone)]
    assert kinds == ["text", "image"]
    assert pending_order.order_number in channel.outbox[0].body


async def test_notification_failure_keeps_completion(store, gateway, event,
                                                     pending_order):
    lifecycle = OrderLifecycle(store, gateway, LogChannel(fail=True))
    result = await lifecycle.apply_payment_success(pending_order.id, "pay_1")
    assert result.outcome is Outcome.APPLIED
    assert (await store.get(Order, pending_order.id)).status == "completed"


async def test_terminal_orders_absorb_success(store, lifecycle, event,
                                              pending_order):
    _, tt = event
    assert await lifecycle.mark_failed(pending_order.id, "test")
    result = await lifecycle.apply_payment_success(pending_order.id, "pay_1")
    assert result.outcome is Outcome.ALREADY_TERMINAL
    assert (await store.get(Order, pending_order.id)).status == "failed"
    assert (await store.get(TicketType, tt.id)).available_quantity == 3


async def test_completed_orders_are_not_demoted(store, lifecycle,
                                                paid_order):
    assert await lifecycle.mark_failed(paid_order.id, "late") is False
    assert await lifecycle.mark_cancelled(paid_order.id) is False
    assert (await store.get(Order, paid_order.id)).status == "completed"


async def test_resolve_by_reference_or_number(lifecycle, pending_order):
    by_ref = await lifecycle.resolve(pending_order.provider_reference, None)
    by_number = await lifecycle.resolve("plink_unknown",
                                        pending_order.order_number)
    assert by_ref.id == by_number.id == pending_order.id


async def test_order_is_charged_at_ticket_price(lifecycle, gateway, event,
                                                user):
    ev, tt = event
    handle = await lifecycle.create_order(user.id, ev.id, tt.id)
    assert handle.order.amount == tt.price


async def test_gateway_failure_releases_session_token(store, lifecycle,
                                                      gateway, event, user):
    ev, tt = event
    gateway.fail_create = True
    with pytest.raises(GatewayUnavailable):
        await lifecycle.create_order(user.id, ev.id, tt.id,
                                     session_token="session_retry")
    gateway.fail_create = False
    handle = await lifecycle.create_order(user.id, ev.id, tt.id,
                                          session_token="session_retry")
    assert handle.created is True
    assert len(await store.query(Order)) == 1
