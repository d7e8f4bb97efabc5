from __future__ import annotations

import re
from typing import Annotated, Literal, Optional

from fastapi import HTTPException
from pydantic import BeforeValidator


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


# Canonical codes mirror Postgres enums in `backend/db/migrations/001_init.sql`.
CurrencyCode = Annotated[Literal["AFN", "USD"], BeforeValidator(_to_upper_str)]
BillStatus = Annotated[Literal["UNPAID", "PARTIAL", "PAID"], BeforeValidator(_to_upper_str)]
BillKind = Annotated[
    Literal["INVOICE", "INITIAL_DEBT_ADJUSTMENT", "PAYMENT_ADJUSTMENT"],
    BeforeValidator(_to_upper_str),
]
StockMovementType = Annotated[Literal["IN", "OUT"], BeforeValidator(_to_upper_str)]
StockSourceType = Annotated[Literal["MANUAL", "CONTAINER", "BILL"], BeforeValidator(_to_upper_str)]

_DIGITS_RE = re.compile(r"^[0-9]+$")


def normalize_digits(value: Optional[str], label: str, *, required: bool = False) -> Optional[str]:
    """
    Bill, payment and mandawi check numbers are digit-only strings.
    Blank input collapses to None (or 400 when the number is required).
    """
    raw = (value or "").strip()
    if not raw:
        if required:
            raise HTTPException(status_code=400, detail=f"{label} is required")
        return None
    if not _DIGITS_RE.match(raw):
        raise HTTPException(status_code=400, detail=f"{label} must be digits only")
    return raw


def clean_text(value: Optional[str]) -> Optional[str]:
    return (value or "").strip() or None


def parse_positive_int(value: Optional[str], fallback: int, max_value: int = 100) -> int:
    # Paging params arrive as raw strings; anything unusable falls back silently.
    try:
        parsed = int(str(value).strip()) if value is not None else 0
    except ValueError:
        parsed = 0
    if parsed <= 0:
        return fallback
    return min(parsed, max_value)
