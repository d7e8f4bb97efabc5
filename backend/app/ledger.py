from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from fastapi import HTTPException

ZERO = Decimal("0")
CENT = Decimal("0.01")

INVOICE = "INVOICE"
INITIAL_DEBT_ADJUSTMENT = "INITIAL_DEBT_ADJUSTMENT"
PAYMENT_ADJUSTMENT = "PAYMENT_ADJUSTMENT"
SYSTEM_KINDS = {INITIAL_DEBT_ADJUSTMENT, PAYMENT_ADJUSTMENT}

# Display notes written on synthetic bills (and used to recognise them in legacy exports).
INITIAL_DEBT_NOTE = "Initial debt adjustment"
PAYMENT_ADJUSTMENT_NOTE = "Customer payment adjustment"


def to_decimal(v) -> Decimal:
    if v is None or v == "":
        return ZERO
    return v if isinstance(v, Decimal) else Decimal(str(v))


def to_money(v) -> Decimal:
    # Money columns are numeric(18,2); compare what will actually be stored.
    return to_decimal(v).quantize(CENT, rounding=ROUND_HALF_UP)


def kind_from_note(note: Optional[str]) -> str:
    n = (note or "").strip()
    if n == INITIAL_DEBT_NOTE:
        return INITIAL_DEBT_ADJUSTMENT
    if n == PAYMENT_ADJUSTMENT_NOTE:
        return PAYMENT_ADJUSTMENT
    return INVOICE


def bill_kind(bill: dict) -> str:
    return bill.get("kind") or kind_from_note(bill.get("note"))


def bill_status(total_afn: Decimal, total_usd: Decimal, paid_afn: Decimal, paid_usd: Decimal) -> str:
    """
    Single source of truth for UNPAID / PARTIAL / PAID. Used by bill creation,
    bill edits, payment creation and payment deletion.
    """
    if paid_afn >= total_afn and paid_usd >= total_usd:
        return "PAID"
    if paid_afn > 0 or paid_usd > 0:
        return "PARTIAL"
    return "UNPAID"


def sum_by_currency(rows: Iterable[dict], amount_key: str) -> tuple[Decimal, Decimal]:
    afn = ZERO
    usd = ZERO
    for r in rows or []:
        amount = to_decimal(r.get(amount_key))
        if r.get("currency") == "AFN":
            afn += amount
        elif r.get("currency") == "USD":
            usd += amount
    return afn, usd


@dataclass(frozen=True)
class BillBalance:
    total_afn: Decimal = ZERO
    total_usd: Decimal = ZERO
    paid_afn: Decimal = ZERO
    paid_usd: Decimal = ZERO

    @property
    def status(self) -> str:
        return bill_status(self.total_afn, self.total_usd, self.paid_afn, self.paid_usd)

    def total(self, currency: str) -> Decimal:
        return self.total_afn if currency == "AFN" else self.total_usd

    def paid(self, currency: str) -> Decimal:
        return self.paid_afn if currency == "AFN" else self.paid_usd

    def remaining(self, currency: str) -> Decimal:
        return max(self.total(currency) - self.paid(currency), ZERO)


def bill_balance(bill: dict) -> BillBalance:
    """
    Totals come from the line items; paid is the legacy pre-ledger baseline
    (bills.paid_afn / paid_usd) plus every payment row.
    """
    total_afn, total_usd = sum_by_currency(bill.get("items") or [], "total_amount")
    pay_afn, pay_usd = sum_by_currency(bill.get("payments") or [], "amount_paid")
    return BillBalance(
        total_afn=total_afn,
        total_usd=total_usd,
        paid_afn=to_decimal(bill.get("paid_afn")) + pay_afn,
        paid_usd=to_decimal(bill.get("paid_usd")) + pay_usd,
    )


# ---------------------------------------------------------------------------
# Bill lines


def normalize_items(items) -> list[dict]:
    """
    Drop lines with a missing product or a non-positive / non-finite package
    count, floor fractional counts, and require at least one survivor.
    """
    out: list[dict] = []
    for it in items or []:
        product_id = (getattr(it, "product_id", None) or "").strip()
        n = getattr(it, "number_of_packages", None)
        if not product_id or n is None:
            continue
        try:
            n = float(n)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(n) or n <= 0:
            continue
        packages = int(math.floor(n))
        if packages <= 0:
            continue
        out.append(
            {
                "product_id": product_id,
                "number_of_packages": packages,
                "unit_price": getattr(it, "unit_price", None),
            }
        )
    if not out:
        raise HTTPException(status_code=400, detail="Invalid bill items")
    return out


def price_items(
    items: list[dict],
    products_by_id: dict[str, dict],
    *,
    allow_price_override: bool = False,
) -> tuple[list[dict], Decimal, Decimal]:
    """
    Snapshot each line's unit price and currency from the product (or from the
    caller's override on edits). AFN and USD totals are accumulated separately.
    """
    lines: list[dict] = []
    total_afn = ZERO
    total_usd = ZERO
    for it in items:
        product = products_by_id.get(str(it["product_id"]))
        if not product:
            raise HTTPException(status_code=400, detail="Product not found for one or more items")
        unit_price = to_decimal(product["current_price_per_package"])
        override = it.get("unit_price")
        if allow_price_override and override is not None:
            unit_price = to_decimal(override)
            if not unit_price.is_finite() or unit_price <= 0:
                raise HTTPException(status_code=400, detail="Unit price must be a positive number")
        currency = product["currency_type"]
        total_amount = unit_price * it["number_of_packages"]
        if currency == "AFN":
            total_afn += total_amount
        elif currency == "USD":
            total_usd += total_amount
        lines.append(
            {
                "product_id": str(it["product_id"]),
                "number_of_packages": it["number_of_packages"],
                "unit_price": unit_price,
                "currency": currency,
                "total_amount": total_amount,
            }
        )
    return lines, total_afn, total_usd


def resolve_paid_for_status(
    status: str,
    total_afn: Decimal,
    total_usd: Decimal,
    paid_afn: Optional[Decimal],
    paid_usd: Optional[Decimal],
) -> tuple[Decimal, Decimal]:
    if status == "PAID":
        return total_afn, total_usd
    if status == "UNPAID":
        return ZERO, ZERO
    if paid_afn is None or paid_usd is None:
        raise HTTPException(status_code=400, detail="Paid AFN and USD are required for partial bills")
    paid_afn, paid_usd = to_money(paid_afn), to_money(paid_usd)
    if paid_afn < 0 or paid_usd < 0:
        raise HTTPException(status_code=400, detail="Paid amounts cannot be negative")
    if paid_afn > total_afn or paid_usd > total_usd:
        raise HTTPException(status_code=400, detail="Paid amounts cannot exceed totals")
    if paid_afn == 0 and paid_usd == 0:
        raise HTTPException(status_code=400, detail="Provide a paid amount for partial bills")
    return paid_afn, paid_usd


# ---------------------------------------------------------------------------
# Customer balances


@dataclass
class CustomerDebt:
    invoiced_afn: Decimal = ZERO
    invoiced_usd: Decimal = ZERO
    paid_afn: Decimal = ZERO
    paid_usd: Decimal = ZERO
    initial_debt_afn: Decimal = ZERO
    initial_debt_usd: Decimal = ZERO
    initial_paid_afn: Decimal = ZERO
    initial_paid_usd: Decimal = ZERO

    @property
    def initial_remaining_afn(self) -> Decimal:
        return max(self.initial_debt_afn - self.initial_paid_afn, ZERO)

    @property
    def initial_remaining_usd(self) -> Decimal:
        return max(self.initial_debt_usd - self.initial_paid_usd, ZERO)

    @property
    def debt_afn(self) -> Decimal:
        return self.invoiced_afn - self.paid_afn + self.initial_remaining_afn

    @property
    def debt_usd(self) -> Decimal:
        return self.invoiced_usd - self.paid_usd + self.initial_remaining_usd

    def as_dict(self) -> dict:
        return {
            "initial_debt_afn": self.initial_debt_afn,
            "initial_debt_usd": self.initial_debt_usd,
            "debt_afn": self.debt_afn,
            "debt_usd": self.debt_usd,
            "paid_afn": self.paid_afn,
            "paid_usd": self.paid_usd,
        }


def customer_debt(bills: Iterable[dict], initial_debt_afn, initial_debt_usd) -> CustomerDebt:
    """
    debt = (invoiced - paid) + max(initial_debt - initial_paid, 0), per currency.

    Initial-debt adjustment bills only pay down the initial baseline; every
    other bill contributes its item totals as invoiced and its payments as paid.
    """
    out = CustomerDebt(
        initial_debt_afn=to_decimal(initial_debt_afn),
        initial_debt_usd=to_decimal(initial_debt_usd),
    )
    for b in bills or []:
        bal = bill_balance(b)
        if bill_kind(b) == INITIAL_DEBT_ADJUSTMENT:
            out.initial_paid_afn += bal.paid_afn
            out.initial_paid_usd += bal.paid_usd
            continue
        out.invoiced_afn += bal.total_afn
        out.invoiced_usd += bal.total_usd
        out.paid_afn += bal.paid_afn
        out.paid_usd += bal.paid_usd
    return out


def debts_by_customer(customers: Iterable[dict], bills: Iterable[dict]) -> dict[str, CustomerDebt]:
    grouped: dict[str, list[dict]] = {}
    for b in bills or []:
        if b.get("customer_id"):
            grouped.setdefault(str(b["customer_id"]), []).append(b)
    return {
        str(c["id"]): customer_debt(grouped.get(str(c["id"]), []), c.get("initial_debt_afn"), c.get("initial_debt_usd"))
        for c in customers or []
    }


# ---------------------------------------------------------------------------
# Customer-targeted payment allocation


@dataclass(frozen=True)
class Allocation:
    # bill_id None means "synthesize an initial-debt adjustment bill for this amount".
    bill_id: Optional[str]
    amount: Decimal


@dataclass
class AllocationPlan:
    allocations: list[Allocation] = field(default_factory=list)
    outstanding: Decimal = ZERO

    @property
    def initial_debt_amount(self) -> Decimal:
        return sum((a.amount for a in self.allocations if a.bill_id is None), ZERO)


def plan_customer_payment(bills: list[dict], currency: str, amount: Decimal, initial_debt) -> AllocationPlan:
    """
    Spread a payment that is not tied to one bill across the customer's open
    bills, oldest first (callers pass bills ordered by bill_date ascending).
    Whatever is left after every bill is settled goes to the initial-debt
    remainder.

    Payments sitting on legacy "customer payment adjustment" bills are not
    attributed to any invoice; they are consumed oldest-first as a credit so
    the outstanding figure matches customer_debt().
    """
    amount = to_money(amount)
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be a positive number")

    initial_paid = ZERO
    credit = ZERO
    open_bills: list[tuple[str, Decimal]] = []
    for b in bills or []:
        bal = bill_balance(b)
        kind = bill_kind(b)
        if kind == INITIAL_DEBT_ADJUSTMENT:
            initial_paid += bal.paid(currency)
            continue
        if kind == PAYMENT_ADJUSTMENT:
            credit += max(bal.paid(currency) - bal.total(currency), ZERO)
            continue
        remaining = bal.remaining(currency)
        if remaining > 0:
            open_bills.append((str(b["id"]), remaining))

    remainders: list[tuple[str, Decimal]] = []
    for bill_id, remaining in open_bills:
        if credit > 0:
            used = min(credit, remaining)
            credit -= used
            remaining -= used
        if remaining > 0:
            remainders.append((bill_id, remaining))

    initial_remaining = max(to_decimal(initial_debt) - initial_paid - credit, ZERO)
    outstanding = sum((r for _, r in remainders), ZERO) + initial_remaining

    if outstanding <= 0:
        raise HTTPException(status_code=400, detail="No outstanding balance for this currency")
    if amount > outstanding:
        raise HTTPException(status_code=400, detail="Payment exceeds outstanding balance")

    plan = AllocationPlan(outstanding=outstanding)
    left = amount
    for bill_id, remaining in remainders:
        if left <= 0:
            break
        applied = to_money(min(remaining, left))
        plan.allocations.append(Allocation(bill_id=bill_id, amount=applied))
        left -= applied
    if left > 0:
        plan.allocations.append(Allocation(bill_id=None, amount=to_money(left)))
    return plan
