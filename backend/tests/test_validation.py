import pytest
from fastapi import HTTPException
from pydantic import BaseModel, ValidationError

from backend.app.validation import (
    BillKind,
    BillStatus,
    CurrencyCode,
    StockMovementType,
    StockSourceType,
    clean_text,
    normalize_digits,
    parse_positive_int,
)


class _M(BaseModel):
    currency: CurrencyCode
    status: BillStatus
    kind: BillKind
    movement: StockMovementType
    source: StockSourceType


def test_validation_types_normalize_case():
    m = _M(currency=" afn ", status="partial", kind="invoice", movement="in", source="Container")
    assert m.currency == "AFN"
    assert m.status == "PARTIAL"
    assert m.kind == "INVOICE"
    assert m.movement == "IN"
    assert m.source == "CONTAINER"


def test_currency_rejects_unknown_code():
    with pytest.raises(ValidationError):
        _M(currency="EUR", status="PAID", kind="INVOICE", movement="IN", source="MANUAL")


def test_normalize_digits():
    assert normalize_digits(" 00123 ", "Bill number") == "00123"
    assert normalize_digits("", "Mandawi check number") is None
    assert normalize_digits(None, "Mandawi check number") is None

    with pytest.raises(HTTPException) as exc_info:
        normalize_digits("12a", "Bill number")
    assert exc_info.value.detail == "Bill number must be digits only"

    with pytest.raises(HTTPException) as exc_info:
        normalize_digits("  ", "Payment number", required=True)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Payment number is required"


def test_clean_text():
    assert clean_text("  Kabul  ") == "Kabul"
    assert clean_text("   ") is None
    assert clean_text(None) is None


def test_parse_positive_int_falls_back_and_caps():
    assert parse_positive_int("3", 1) == 3
    assert parse_positive_int("abc", 1) == 1
    assert parse_positive_int("-2", 10) == 10
    assert parse_positive_int(None, 10) == 10
    assert parse_positive_int("500", 10, max_value=100) == 100
