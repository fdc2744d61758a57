"""
Door scanning: credential decoding, read-only validation, single redemption.
"""
import asyncio

import pytest

from eventpass.errors import ErrorKind, Failure
from eventpass.model import Order
from eventpass.scanning import (
    ConfirmResult, Credential, ScanResult, parse_credential,
)


@pytest.mark.parametrize("raw, shape, number", [
    ('{"orderNumber":"UE1700000000000123","orderId":4}', "canonical",
     "UE1700000000000123"),
    ("https://tickets.example/verify?OrderNumber=UE42", "url", "UE42"),
    ("https://tickets.example/t?order=UE43&x=1", "url", "UE43"),
    ("https://tickets.example/#/scan?OrderNumber=UE45", "url", "UE45"),
    ("OrderNumber=UE46", "url", "UE46"),
    ("https://tickets.example/v?OrderNumber=UE%2047#top", "url", "UE 47"),
    ("  UE44  ", "bare", "UE44"),
])
def test_credential_shapes(raw, shape, number):
    cred = parse_credential(raw)
    assert isinstance(cred, Credential)
    assert cred.shape == shape
    assert cred.order_number == number


@pytest.mark.parametrize("raw", [
    "", "   ", None, "[1, 2]", '{"orderId": 4}', "{not json",
    "https://tickets.example/verify?OrderNumber=",
])
def test_invalid_credentials(raw):
    result = parse_credential(raw)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.INVALID_CREDENTIAL


async def test_validate_confirm_confirm(scanner, paid_order):
    first = await scanner.validate(paid_order.qr_payload)
    assert isinstance(first, ScanResult)
    assert first.scanned is False
    assert first.detail["orderNumber"] == paid_order.order_number
    assert first.detail["customerName"] == "Asha Rao"
    assert first.detail["eventName"] == "Test Fest"
    assert first.detail["totalTicketsPurchased"] == 1

    confirmed = await scanner.confirm(paid_order.id, "gate-1")
    assert isinstance(confirmed, ConfirmResult)
    assert confirmed.scanned_by == "gate-1"

    again = await scanner.confirm(paid_order.id, "gate-2")
    assert isinstance(again, Failure)
    assert again.kind is ErrorKind.ALREADY_SCANNED
    assert again.data["scannedBy"] == "gate-1"

    seen = await scanner.validate(paid_order.qr_payload)
    assert seen.scanned is True
    assert seen.detail["scannedBy"] == "gate-1"


async def test_validate_is_read_only(store, scanner, paid_order):
    for _ in range(3):
        result = await scanner.validate(paid_order.order_number)
        assert result.scanned is False
    order = await store.get(Order, paid_order.id)
    assert order.is_scanned is False
    assert order.scanned_at is None


async def test_concurrent_confirms_admit_once(store, scanner, paid_order):
    results = await asyncio.gather(*[
        scanner.confirm(paid_order.id, f"gate-{i}") for i in range(5)
    ])
    winners = [r for r in results if isinstance(r, ConfirmResult)]
    assert len(winners) == 1
    losers = [r for r in results if isinstance(r, Failure)]
    assert all(r.kind is ErrorKind.ALREADY_SCANNED for r in losers)
    order = await store.get(Order, paid_order.id)
    assert order.scanned_by == winners[0].scanned_by


async def test_unpaid_ticket(scanner, pending_order):
    result = await scanner.validate(pending_order.order_number)
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.PAYMENT_INCOMPLETE
    assert result.data["status"] == "pending"

    confirm = await scanner.confirm(pending_order.id, "gate-1")
    assert confirm.kind is ErrorKind.PAYMENT_INCOMPLETE


async def test_unknown_ticket(scanner):
    result = await scanner.validate('{"orderNumber": "UE000"}')
    assert result.kind is ErrorKind.TICKET_NOT_FOUND
    assert result.http_status == 404

    missing = await scanner.confirm(424242, "gate-1")
    assert missing.kind is ErrorKind.NOT_FOUND


async def test_url_credential_finds_order(scanner, paid_order):
    url = f"https://tickets.example/v?OrderNumber={paid_order.order_number}"
    result = await scanner.validate(url)
    assert result.order_id == paid_order.id


async def test_list_shaped_scanner_history(store, scanner, paid_order):
    await store.update_where(
        Order, (Order.id == paid_order.id,),
        {"is_scanned": True, "scanned_by": '["gate-1", "gate-2"]',
         "scanned_at": 1_700_000_000.0},
    )
    result = await scanner.validate(paid_order.order_number)
    assert result.scanned is True
    assert result.detail["scannedBy"] == "gate-2"
    assert result.detail["scannedAt"].startswith("2023-11-14")
