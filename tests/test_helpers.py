import re
from datetime import date

import pytest

from eventpass.helpers import (
    format_amount, format_date, generate_order_number,
    generate_session_token, normalize_phone,
)
from eventpass.model.kv import MemoryKVStore, new_store


@pytest.mark.parametrize("raw, expected", [
    ("9876543210", "919876543210"),
    ("09876543210", "919876543210"),
    ("+91 98765-43210", "919876543210"),
    ("919876543210", "919876543210"),
    ("", ""),
    (None, ""),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_identifiers():
    assert re.fullmatch(r"UE\d{13}\d{3}", generate_order_number())
    assert re.fullmatch(r"session_\d{13}_[0-9a-f]{8}",
                        generate_session_token())


def test_display_formats():
    assert format_amount(49_900, "INR") == "₹499.00"
    assert format_amount(1_050, "usd") == "USD 10.50"
    assert format_date(date(2026, 12, 5)) == "5 Dec 2026"
    assert format_date(None) == ""


async def test_memory_kv_set_if_absent_and_incr():
    kv = MemoryKVStore()
    assert await kv.set_if_absent("wa:msg:1", "1", ttl=60) is True
    assert await kv.set_if_absent("wa:msg:1", "1", ttl=60) is False
    assert await kv.incr("n") == 1
    assert await kv.incr("n") == 2
    await kv.delete("n")
    assert await kv.get("n") is None


async def test_memory_kv_is_bounded():
    kv = new_store(backend="memory", max_entries=2)
    for i in range(3):
        await kv.set(f"k{i}", str(i))
    assert await kv.get("k0") is None
    assert await kv.get("k2") == "2"
