from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from backend.app.ledger import (
    INITIAL_DEBT_ADJUSTMENT,
    INITIAL_DEBT_NOTE,
    INVOICE,
    PAYMENT_ADJUSTMENT,
    PAYMENT_ADJUSTMENT_NOTE,
    bill_balance,
    bill_kind,
    bill_status,
    customer_debt,
    debts_by_customer,
    normalize_items,
    plan_customer_payment,
    price_items,
    resolve_paid_for_status,
    to_money,
)

D = Decimal


def _bill(bill_id, items=(), payments=(), kind=INVOICE, paid_afn="0", paid_usd="0", note=None):
    return {
        "id": bill_id,
        "kind": kind,
        "note": note,
        "paid_afn": D(paid_afn),
        "paid_usd": D(paid_usd),
        "items": [{"currency": c, "total_amount": D(a)} for c, a in items],
        "payments": [{"currency": c, "amount_paid": D(a)} for c, a in payments],
    }


def test_bill_status_truth_table():
    assert bill_status(D("100"), D("0"), D("100"), D("0")) == "PAID"
    assert bill_status(D("100"), D("5"), D("100"), D("0")) == "PARTIAL"
    assert bill_status(D("100"), D("5"), D("0"), D("1")) == "PARTIAL"
    assert bill_status(D("100"), D("5"), D("0"), D("0")) == "UNPAID"
    # Overpayment still reads as settled.
    assert bill_status(D("100"), D("0"), D("150"), D("0")) == "PAID"


def test_bill_balance_adds_legacy_baseline_to_payments():
    bal = bill_balance(
        _bill(
            "b1",
            items=[("AFN", "600"), ("AFN", "400"), ("USD", "20")],
            payments=[("AFN", "100"), ("USD", "5")],
            paid_afn="50",
        )
    )
    assert bal.total_afn == D("1000")
    assert bal.total_usd == D("20")
    assert bal.paid_afn == D("150")
    assert bal.paid_usd == D("5")
    assert bal.remaining("AFN") == D("850")
    assert bal.remaining("USD") == D("15")
    assert bal.status == "PARTIAL"


def test_bill_kind_falls_back_to_legacy_note():
    assert bill_kind({"kind": None, "note": INITIAL_DEBT_NOTE}) == INITIAL_DEBT_ADJUSTMENT
    assert bill_kind({"note": f"  {PAYMENT_ADJUSTMENT_NOTE} "}) == PAYMENT_ADJUSTMENT
    assert bill_kind({"note": "delivered to shop"}) == INVOICE
    assert bill_kind({"kind": PAYMENT_ADJUSTMENT, "note": None}) == PAYMENT_ADJUSTMENT


def test_normalize_items_drops_invalid_and_floors_counts():
    items = [
        SimpleNamespace(product_id="p1", number_of_packages=2.9, unit_price=None),
        SimpleNamespace(product_id="p2", number_of_packages=0, unit_price=None),
        SimpleNamespace(product_id="p3", number_of_packages=-1, unit_price=None),
        SimpleNamespace(product_id="p4", number_of_packages=float("inf"), unit_price=None),
        SimpleNamespace(product_id="", number_of_packages=3, unit_price=None),
        SimpleNamespace(product_id="p5", number_of_packages=0.5, unit_price=None),
    ]
    out = normalize_items(items)
    assert out == [{"product_id": "p1", "number_of_packages": 2, "unit_price": None}]


def test_normalize_items_requires_a_survivor():
    with pytest.raises(HTTPException) as exc_info:
        normalize_items([SimpleNamespace(product_id="p1", number_of_packages=float("nan"), unit_price=None)])
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Invalid bill items"


def test_price_items_snapshots_price_and_keeps_currencies_apart():
    products = {
        "p1": {"id": "p1", "current_price_per_package": D("600.00"), "currency_type": "AFN"},
        "p2": {"id": "p2", "current_price_per_package": D("12.50"), "currency_type": "USD"},
    }
    lines, total_afn, total_usd = price_items(
        [
            {"product_id": "p1", "number_of_packages": 2, "unit_price": None},
            {"product_id": "p2", "number_of_packages": 3, "unit_price": None},
        ],
        products,
    )
    assert total_afn == D("1200.00")
    assert total_usd == D("37.50")
    assert lines[0]["unit_price"] == D("600.00")
    assert lines[0]["total_amount"] == D("1200.00")
    assert lines[1]["currency"] == "USD"


def test_price_items_ignores_override_unless_allowed():
    products = {"p1": {"id": "p1", "current_price_per_package": D("600"), "currency_type": "AFN"}}
    items = [{"product_id": "p1", "number_of_packages": 2, "unit_price": D("550")}]

    _, total_afn, _ = price_items(items, products)
    assert total_afn == D("1200")

    lines, total_afn, _ = price_items(items, products, allow_price_override=True)
    assert total_afn == D("1100")
    assert lines[0]["unit_price"] == D("550")


def test_price_items_rejects_unknown_product_and_bad_override():
    with pytest.raises(HTTPException) as exc_info:
        price_items([{"product_id": "missing", "number_of_packages": 1, "unit_price": None}], {})
    assert exc_info.value.detail == "Product not found for one or more items"

    products = {"p1": {"id": "p1", "current_price_per_package": D("600"), "currency_type": "AFN"}}
    with pytest.raises(HTTPException) as exc_info:
        price_items(
            [{"product_id": "p1", "number_of_packages": 1, "unit_price": D("0")}],
            products,
            allow_price_override=True,
        )
    assert exc_info.value.detail == "Unit price must be a positive number"


def test_resolve_paid_for_status():
    assert resolve_paid_for_status("PAID", D("10"), D("2"), None, None) == (D("10"), D("2"))
    assert resolve_paid_for_status("UNPAID", D("10"), D("2"), D("5"), D("1")) == (D("0"), D("0"))
    assert resolve_paid_for_status("PARTIAL", D("10"), D("2"), D("10"), D("0")) == (D("10"), D("0"))


@pytest.mark.parametrize(
    "paid_afn,paid_usd,message",
    [
        (None, D("0"), "Paid AFN and USD are required for partial bills"),
        (D("-1"), D("0"), "Paid amounts cannot be negative"),
        (D("10.01"), D("0"), "Paid amounts cannot exceed totals"),
        (D("0"), D("0"), "Provide a paid amount for partial bills"),
    ],
)
def test_resolve_paid_for_partial_rejections(paid_afn, paid_usd, message):
    with pytest.raises(HTTPException) as exc_info:
        resolve_paid_for_status("PARTIAL", D("10"), D("2"), paid_afn, paid_usd)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == message


def test_customer_debt_adds_unpaid_initial_debt():
    bills = [
        _bill("b1", items=[("AFN", "1000")], payments=[("AFN", "400")]),
        _bill("b2", items=[("USD", "50")], paid_usd="10"),
        _bill("adj", payments=[("AFN", "300")], kind=INITIAL_DEBT_ADJUSTMENT),
    ]
    debt = customer_debt(bills, D("500"), D("0"))
    assert debt.debt_afn == D("800")  # (1000 - 400) + (500 - 300)
    assert debt.debt_usd == D("40")
    assert debt.paid_afn == D("400")
    assert debt.initial_remaining_afn == D("200")


def test_customer_debt_never_counts_initial_overpayment_as_credit():
    bills = [_bill("adj", payments=[("AFN", "900")], kind=INITIAL_DEBT_ADJUSTMENT)]
    debt = customer_debt(bills, D("500"), D("0"))
    assert debt.debt_afn == D("0")


def test_debts_by_customer_groups_and_skips_temp_customer_bills():
    customers = [
        {"id": "c1", "initial_debt_afn": D("0"), "initial_debt_usd": D("0")},
        {"id": "c2", "initial_debt_afn": D("100"), "initial_debt_usd": D("0")},
    ]
    b1 = _bill("b1", items=[("AFN", "70")])
    b1["customer_id"] = "c1"
    temp = _bill("b2", items=[("AFN", "999")])
    temp["customer_id"] = None
    out = debts_by_customer(customers, [b1, temp])
    assert out["c1"].debt_afn == D("70")
    assert out["c2"].debt_afn == D("100")
    assert out["c2"].as_dict()["initial_debt_afn"] == D("100")


def test_plan_allocates_oldest_bill_first():
    bills = [
        _bill("old", items=[("AFN", "100")]),
        _bill("new", items=[("AFN", "50")]),
    ]
    plan = plan_customer_payment(bills, "AFN", D("120"), D("0"))
    assert [(a.bill_id, a.amount) for a in plan.allocations] == [("old", D("100")), ("new", D("20"))]
    assert plan.initial_debt_amount == D("0")
    assert plan.outstanding == D("150")


def test_plan_spills_leftover_to_initial_debt():
    bills = [
        _bill("b1", items=[("AFN", "100")], payments=[("AFN", "60")]),
        _bill("adj", payments=[("AFN", "50")], kind=INITIAL_DEBT_ADJUSTMENT),
    ]
    plan = plan_customer_payment(bills, "AFN", D("100"), D("200"))
    assert [(a.bill_id, a.amount) for a in plan.allocations] == [("b1", D("40")), (None, D("60"))]
    assert plan.outstanding == D("190")
    assert plan.initial_debt_amount == D("60")


def test_plan_ignores_other_currency_and_settled_bills():
    bills = [
        _bill("usd_only", items=[("USD", "100")]),
        _bill("settled", items=[("AFN", "100")], payments=[("AFN", "100")]),
        _bill("open", items=[("AFN", "30")]),
    ]
    plan = plan_customer_payment(bills, "AFN", D("30"), D("0"))
    assert [(a.bill_id, a.amount) for a in plan.allocations] == [("open", D("30"))]


def test_plan_consumes_payment_adjustment_credit_oldest_first():
    bills = [
        _bill("credit", payments=[("AFN", "40")], kind=PAYMENT_ADJUSTMENT),
        _bill("b1", items=[("AFN", "100")]),
        _bill("b2", items=[("AFN", "100")]),
    ]
    plan = plan_customer_payment(bills, "AFN", D("160"), D("0"))
    assert [(a.bill_id, a.amount) for a in plan.allocations] == [("b1", D("60")), ("b2", D("100"))]
    assert plan.outstanding == D("160")


def test_plan_rejects_when_nothing_outstanding():
    with pytest.raises(HTTPException) as exc_info:
        plan_customer_payment([_bill("b1", items=[("USD", "10")])], "AFN", D("1"), D("0"))
    assert exc_info.value.detail == "No outstanding balance for this currency"


def test_plan_rejects_overpayment_but_accepts_exact_amount():
    bills = [_bill("b1", items=[("AFN", "100")])]
    with pytest.raises(HTTPException) as exc_info:
        plan_customer_payment(bills, "AFN", D("150.01"), D("50"))
    assert exc_info.value.detail == "Payment exceeds outstanding balance"

    plan = plan_customer_payment(bills, "AFN", D("150"), D("50"))
    assert plan.initial_debt_amount == D("50")


def test_plan_rejects_non_positive_amount():
    with pytest.raises(HTTPException):
        plan_customer_payment([_bill("b1", items=[("AFN", "100")])], "AFN", D("0"), D("0"))


@pytest.mark.parametrize(
    "value,expected",
    [("100.004", "100.00"), ("100.005", "100.01"), ("7", "7.00"), (None, "0.00")],
)
def test_to_money_rounds_half_up_to_cents(value, expected):
    assert str(to_money(value)) == expected


def test_partial_paid_amounts_are_checked_at_cent_scale():
    # 10.004 is stored as 10.00, which does not exceed a 10.00 total.
    assert resolve_paid_for_status("PARTIAL", D("10"), D("2"), D("10.004"), D("0")) == (D("10.00"), D("0.00"))


def test_plan_drops_sub_cent_tail_instead_of_spilling_it():
    bills = [_bill("b1", items=[("AFN", "100")])]
    plan = plan_customer_payment(bills, "AFN", D("100.004"), D("50"))
    assert [(a.bill_id, str(a.amount)) for a in plan.allocations] == [("b1", "100.00")]
    assert plan.initial_debt_amount == D("0")


def test_plan_rejects_amount_that_rounds_to_zero():
    with pytest.raises(HTTPException) as exc_info:
        plan_customer_payment([_bill("b1", items=[("AFN", "100")])], "AFN", D("0.004"), D("0"))
    assert exc_info.value.detail == "Amount must be a positive number"
