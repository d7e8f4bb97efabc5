from decimal import Decimal

from fastapi import HTTPException


def assert_not_overpaid(
    total_afn: Decimal,
    total_usd: Decimal,
    paid_afn: Decimal,
    paid_usd: Decimal,
    detail: str = "Paid amounts cannot exceed totals",
):
    # Amounts are exact decimals: paying exactly the total is fine, one cent more is not.
    if paid_afn > total_afn or paid_usd > total_usd:
        raise HTTPException(status_code=400, detail=detail)


def assert_within_outstanding(
    amount: Decimal,
    outstanding: Decimal,
    detail: str = "Payment exceeds outstanding balance",
):
    if amount > outstanding:
        raise HTTPException(status_code=400, detail=detail)
