from datetime import datetime, timezone

from backend.scripts.clear_duplicate_numbers import duplicate_bill_ids, duplicate_payment_ids


def _at(day):
    return datetime(2026, 1, day, tzinfo=timezone.utc)


def test_oldest_bill_keeps_its_number():
    rows = [
        {"id": "b1", "bill_number": "10"},
        {"id": "b2", "bill_number": "10"},
        {"id": "b3", "bill_number": "10"},
        {"id": "b4", "bill_number": "11"},
        {"id": "b5", "bill_number": "11"},
    ]
    assert duplicate_bill_ids(rows) == ["b2", "b3", "b5"]


def test_allocated_receipt_rows_keep_their_shared_number():
    rows = [
        {"id": "p1", "payment_number": "7", "payment_date": _at(1)},
        {"id": "p2", "payment_number": "7", "payment_date": _at(1)},
        {"id": "p3", "payment_number": "7", "payment_date": _at(4)},
        {"id": "p4", "payment_number": "8", "payment_date": _at(2)},
        {"id": "p5", "payment_number": "8", "payment_date": _at(3)},
    ]
    assert duplicate_payment_ids(rows) == ["p3", "p5"]
