from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.payment_guards import assert_not_overpaid, assert_within_outstanding


def test_assert_not_overpaid_accepts_exact_totals():
    assert_not_overpaid(
        total_afn=Decimal("1200.00"),
        total_usd=Decimal("0"),
        paid_afn=Decimal("1200"),
        paid_usd=Decimal("0"),
    )


def test_assert_not_overpaid_rejects_afn_overage():
    with pytest.raises(HTTPException) as exc_info:
        assert_not_overpaid(
            total_afn=Decimal("1200.00"),
            total_usd=Decimal("10.00"),
            paid_afn=Decimal("1200.01"),
            paid_usd=Decimal("0"),
        )
    exc = exc_info.value
    assert exc.status_code == 400
    assert exc.detail == "Paid amounts cannot exceed totals"


def test_assert_not_overpaid_rejects_usd_overage_with_custom_detail():
    with pytest.raises(HTTPException) as exc_info:
        assert_not_overpaid(
            total_afn=Decimal("0"),
            total_usd=Decimal("10.00"),
            paid_afn=Decimal("0"),
            paid_usd=Decimal("10.50"),
            detail="edited bill would be overpaid",
        )
    assert "edited bill would be overpaid" in str(exc_info.value.detail)


def test_assert_within_outstanding_boundary():
    # Cement: 2 x 600 AFN with 300 already paid leaves exactly 900.
    assert_within_outstanding(Decimal("900"), Decimal("900.00"))
    with pytest.raises(HTTPException) as exc_info:
        assert_within_outstanding(Decimal("900.01"), Decimal("900.00"))
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Payment exceeds outstanding balance"
