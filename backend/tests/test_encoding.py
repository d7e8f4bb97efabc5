import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from backend.app.encoding import to_jsonable


def test_to_jsonable_keeps_money_exact():
    rid = uuid.UUID("11111111-1111-1111-1111-111111111111")
    out = to_jsonable(
        {
            "id": rid,
            "amounts": [Decimal("1200.00"), Decimal("0.10")],
            "paid_at": datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc),
            "day": date(2026, 3, 1),
            "nested": ({"count": 2},),
            "flag": True,
            "missing": None,
        }
    )
    assert out == {
        "id": "11111111-1111-1111-1111-111111111111",
        "amounts": ["1200.00", "0.10"],
        "paid_at": "2026-03-01T08:30:00+00:00",
        "day": "2026-03-01",
        "nested": [{"count": 2}],
        "flag": True,
        "missing": None,
    }
