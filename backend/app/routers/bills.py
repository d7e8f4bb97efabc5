from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..bill_loader import BILL_COLUMNS, attach_lines, load_bill
from ..db import get_conn
from ..encoding import to_jsonable
from ..ledger import (
    INVOICE,
    SYSTEM_KINDS,
    bill_balance,
    bill_kind,
    bill_status,
    normalize_items,
    price_items,
    resolve_paid_for_status,
)
from ..logs import json_log
from ..payment_guards import assert_not_overpaid
from ..validation import BillStatus, clean_text, normalize_digits

router = APIRouter(prefix="/bills", tags=["bills"])


class BillItemIn(BaseModel):
    product_id: Optional[str] = None
    number_of_packages: Optional[float] = None
    # Only honoured on edits; new bills always snapshot the current product price.
    unit_price: Optional[Decimal] = None


class BillIn(BaseModel):
    customer_id: Optional[str] = None
    temp_customer_name: Optional[str] = None
    bill_number: Optional[str] = None
    status: BillStatus = "UNPAID"
    sherkat_stock: bool = False
    mandawi_check: bool = False
    mandawi_check_number: Optional[str] = None
    bill_date: Optional[datetime] = None
    note: Optional[str] = None
    paid_afn: Optional[Decimal] = None
    paid_usd: Optional[Decimal] = None
    items: List[BillItemIn] = []


class BillUpdate(BaseModel):
    bill_number: Optional[str] = None
    sherkat_stock: Optional[bool] = None
    mandawi_check: Optional[bool] = None
    mandawi_check_number: Optional[str] = None
    bill_date: Optional[datetime] = None
    note: Optional[str] = None
    items: List[BillItemIn] = []


def _products_by_id(cur, items: list[dict]) -> dict[str, dict]:
    ids = sorted({it["product_id"] for it in items})
    cur.execute(
        """
        SELECT id, name, current_price_per_package, currency_type
        FROM products
        WHERE id = ANY(%s::uuid[])
        """,
        (ids,),
    )
    return {str(r["id"]): r for r in cur.fetchall() or []}


def _assert_bill_number_free(cur, bill_number: str, exclude_bill_id: Optional[str] = None):
    if exclude_bill_id:
        cur.execute(
            "SELECT 1 FROM bills WHERE bill_number = %s AND id <> %s LIMIT 1",
            (bill_number, exclude_bill_id),
        )
    else:
        cur.execute("SELECT 1 FROM bills WHERE bill_number = %s LIMIT 1", (bill_number,))
    if cur.fetchone():
        raise HTTPException(status_code=409, detail="Bill number already exists")


def _insert_lines(cur, bill_id: str, lines: list[dict], *, deduct_stock: bool):
    for ln in lines:
        cur.execute(
            """
            INSERT INTO bill_items (id, bill_id, product_id, number_of_packages, unit_price, currency, total_amount)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
            """,
            (bill_id, ln["product_id"], ln["number_of_packages"], ln["unit_price"], ln["currency"], ln["total_amount"]),
        )
    if not deduct_stock:
        return
    for ln in lines:
        cur.execute(
            """
            INSERT INTO stocks (id, product_id, bill_id, quantity_change, movement_type, source_type, note)
            VALUES (gen_random_uuid(), %s, %s, %s, 'OUT', 'BILL', 'Bill deduction')
            """,
            (ln["product_id"], bill_id, -abs(ln["number_of_packages"])),
        )


def _with_totals(bill: dict) -> dict:
    bal = bill_balance(bill)
    bill["kind"] = bill_kind(bill)
    bill["total_afn"] = bal.total_afn
    bill["total_usd"] = bal.total_usd
    bill["paid_total_afn"] = bal.paid_afn
    bill["paid_total_usd"] = bal.paid_usd
    bill["remaining_afn"] = bal.remaining("AFN")
    bill["remaining_usd"] = bal.remaining("USD")
    return bill


@router.get("")
def list_bills():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {BILL_COLUMNS}, c.name AS customer_name
                FROM bills b
                LEFT JOIN customers c ON c.id = b.customer_id
                ORDER BY b.bill_date DESC, b.created_at DESC
                """
            )
            bills = attach_lines(cur, cur.fetchall() or [], with_product=True)
            return to_jsonable({"bills": [_with_totals(b) for b in bills]})


@router.get("/{bill_id}")
def get_bill(bill_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            bill = load_bill(cur, bill_id, with_product=True)
            if not bill:
                raise HTTPException(status_code=404, detail="Bill not found")
            return to_jsonable(_with_totals(bill))


@router.post("", status_code=201)
def create_bill(data: BillIn):
    bill_number = normalize_digits(data.bill_number, "Bill number", required=True)
    check_number = normalize_digits(data.mandawi_check_number, "Mandawi check number")
    customer_id = clean_text(data.customer_id)
    temp_name = clean_text(data.temp_customer_name)
    if bool(customer_id) == bool(temp_name):
        raise HTTPException(status_code=400, detail="Provide either a customer or a temporary customer name")
    if not data.items:
        raise HTTPException(status_code=400, detail="At least one bill item is required")
    items = normalize_items(data.items)

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                if customer_id:
                    cur.execute("SELECT id FROM customers WHERE id = %s", (customer_id,))
                    if not cur.fetchone():
                        raise HTTPException(status_code=404, detail="Customer not found")
                _assert_bill_number_free(cur, bill_number)

                lines, total_afn, total_usd = price_items(items, _products_by_id(cur, items))
                paid_afn, paid_usd = resolve_paid_for_status(
                    data.status, total_afn, total_usd, data.paid_afn, data.paid_usd
                )
                status = bill_status(total_afn, total_usd, paid_afn, paid_usd)

                cur.execute(
                    f"""
                    INSERT INTO bills AS b
                      (id, customer_id, temp_customer_name, bill_number, kind, status, sherkat_stock,
                       mandawi_check, mandawi_check_number, bill_date, note)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, now()), %s)
                    RETURNING {BILL_COLUMNS}
                    """,
                    (
                        customer_id,
                        temp_name,
                        bill_number,
                        INVOICE,
                        status,
                        data.sherkat_stock,
                        data.mandawi_check or bool(check_number),
                        check_number,
                        data.bill_date,
                        data.note,
                    ),
                )
                bill = cur.fetchone()
                bill_id = str(bill["id"])
                _insert_lines(cur, bill_id, lines, deduct_stock=not data.sherkat_stock)

                method = "Auto" if data.status == "PAID" else "Manual"
                for currency, amount in (("AFN", paid_afn), ("USD", paid_usd)):
                    if amount > 0:
                        cur.execute(
                            """
                            INSERT INTO payments (id, bill_id, amount_paid, currency, payment_method)
                            VALUES (gen_random_uuid(), %s, %s, %s, %s)
                            """,
                            (bill_id, amount, currency, method),
                        )

                attach_lines(cur, [bill], with_product=True)
                json_log(
                    "info",
                    "bill.created",
                    bill_id=bill_id,
                    bill_number=bill_number,
                    status=status,
                    total_afn=total_afn,
                    total_usd=total_usd,
                )
                return to_jsonable(_with_totals(bill))


@router.put("/{bill_id}")
def update_bill(bill_id: str, data: BillUpdate):
    # Fields left out of the request keep their stored values.
    patch = data.model_dump(exclude_unset=True)
    if "bill_number" in patch:
        patch["bill_number"] = normalize_digits(patch["bill_number"], "Bill number", required=True)
    if "mandawi_check_number" in patch:
        patch["mandawi_check_number"] = normalize_digits(patch["mandawi_check_number"], "Mandawi check number")
    if not data.items:
        raise HTTPException(status_code=400, detail="At least one bill item is required")
    items = normalize_items(data.items)

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                bill = load_bill(cur, bill_id, for_update=True)
                if not bill:
                    raise HTTPException(status_code=404, detail="Bill not found")
                if bill_kind(bill) in SYSTEM_KINDS:
                    raise HTTPException(status_code=400, detail="System adjustment bills cannot be edited")
                bill_number = patch.get("bill_number", bill["bill_number"])
                check_number = patch.get("mandawi_check_number", bill.get("mandawi_check_number"))
                if "bill_number" in patch:
                    _assert_bill_number_free(cur, bill_number, exclude_bill_id=bill_id)

                lines, total_afn, total_usd = price_items(
                    items, _products_by_id(cur, items), allow_price_override=True
                )
                # Baseline plus live payments, checked against the edited totals.
                bal = bill_balance(bill)
                assert_not_overpaid(total_afn, total_usd, bal.paid_afn, bal.paid_usd)
                status = bill_status(total_afn, total_usd, bal.paid_afn, bal.paid_usd)

                sherkat_stock = bill["sherkat_stock"] if data.sherkat_stock is None else data.sherkat_stock
                mandawi_check = bill["mandawi_check"] if data.mandawi_check is None else data.mandawi_check
                note = patch["note"] if "note" in patch else bill.get("note")

                cur.execute("DELETE FROM bill_items WHERE bill_id = %s", (bill_id,))
                cur.execute("DELETE FROM stocks WHERE bill_id = %s AND source_type = 'BILL'", (bill_id,))
                cur.execute(
                    f"""
                    UPDATE bills b
                    SET bill_number = %s,
                        status = %s,
                        sherkat_stock = %s,
                        mandawi_check = %s,
                        mandawi_check_number = %s,
                        bill_date = COALESCE(%s, bill_date),
                        note = %s
                    WHERE id = %s
                    RETURNING {BILL_COLUMNS}
                    """,
                    (
                        bill_number,
                        status,
                        sherkat_stock,
                        bool(mandawi_check) or bool(check_number),
                        check_number,
                        data.bill_date,
                        note,
                        bill_id,
                    ),
                )
                updated = cur.fetchone()
                _insert_lines(cur, bill_id, lines, deduct_stock=not sherkat_stock)

                attach_lines(cur, [updated], with_product=True)
                json_log("info", "bill.updated", bill_id=bill_id, status=status)
                return to_jsonable(_with_totals(updated))


@router.delete("/{bill_id}")
def delete_bill(bill_id: str):
    # Stock is an append-only history: removing the bill's deductions is not a reversal entry.
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id, kind, note FROM bills WHERE id = %s FOR UPDATE", (bill_id,))
                bill = cur.fetchone()
                if not bill:
                    raise HTTPException(status_code=404, detail="Bill not found")
                if bill_kind(bill) in SYSTEM_KINDS:
                    raise HTTPException(status_code=400, detail="System adjustment bills cannot be deleted")
                cur.execute("DELETE FROM payments WHERE bill_id = %s", (bill_id,))
                cur.execute("DELETE FROM bill_items WHERE bill_id = %s", (bill_id,))
                cur.execute("DELETE FROM stocks WHERE bill_id = %s AND source_type = 'BILL'", (bill_id,))
                cur.execute("DELETE FROM bills WHERE id = %s", (bill_id,))
                json_log("info", "bill.deleted", bill_id=bill_id)
                return {"success": True}
