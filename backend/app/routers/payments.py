from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..bill_loader import load_bill, load_customer_bills, refresh_bill_status
from ..db import get_conn
from ..encoding import to_jsonable
from ..ledger import (
    INITIAL_DEBT_ADJUSTMENT,
    INITIAL_DEBT_NOTE,
    SYSTEM_KINDS,
    bill_balance,
    bill_kind,
    plan_customer_payment,
    to_money,
)
from ..logs import json_log
from ..payment_guards import assert_within_outstanding
from ..validation import CurrencyCode, clean_text, normalize_digits

router = APIRouter(prefix="/payments", tags=["payments"])

PAYMENT_COLUMNS = "id, bill_id, payment_number, amount_paid, currency, payment_date, payment_method, note"


class PaymentIn(BaseModel):
    bill_id: Optional[str] = None
    customer_id: Optional[str] = None
    amount_paid: Decimal
    currency: CurrencyCode
    payment_number: Optional[str] = None
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    note: Optional[str] = None


def _insert_payment(cur, bill_id: str, amount: Decimal, data: PaymentIn, payment_number: str) -> dict:
    cur.execute(
        f"""
        INSERT INTO payments (id, bill_id, payment_number, amount_paid, currency, payment_date, payment_method, note)
        VALUES (gen_random_uuid(), %s, %s, %s, %s, COALESCE(%s, now()), %s, %s)
        RETURNING {PAYMENT_COLUMNS}
        """,
        (
            bill_id,
            payment_number,
            amount,
            data.currency,
            data.payment_date,
            clean_text(data.payment_method) or "Manual",
            data.note,
        ),
    )
    return cur.fetchone()


@router.get("")
def list_payments(bill_id: Optional[str] = None, customer_id: Optional[str] = None):
    where = []
    params = []
    if bill_id:
        where.append("p.bill_id = %s")
        params.append(bill_id)
    if customer_id:
        where.append("b.customer_id = %s")
        params.append(customer_id)
    sql_where = f"WHERE {' AND '.join(where)}" if where else ""
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT p.id, p.bill_id, p.payment_number, p.amount_paid, p.currency,
                       p.payment_date, p.payment_method, p.note,
                       b.bill_number, b.customer_id
                FROM payments p
                JOIN bills b ON b.id = p.bill_id
                {sql_where}
                ORDER BY p.payment_date DESC
                """,
                params,
            )
            return to_jsonable({"payments": cur.fetchall()})


@router.post("", status_code=201)
def create_payment(data: PaymentIn):
    if not data.amount_paid.is_finite():
        raise HTTPException(status_code=400, detail="Amount must be a positive number")
    amount = to_money(data.amount_paid)
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be a positive number")
    payment_number = normalize_digits(data.payment_number, "Payment number", required=True)
    bill_id = clean_text(data.bill_id)
    customer_id = clean_text(data.customer_id)
    if not bill_id and not customer_id:
        raise HTTPException(status_code=400, detail="Customer id is required when bill id is not provided")

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM payments WHERE payment_number = %s LIMIT 1", (payment_number,))
                if cur.fetchone():
                    raise HTTPException(status_code=409, detail="Payment number already exists")
                # The receipt's primary key settles concurrent requests carrying the same number.
                cur.execute("INSERT INTO payment_receipts (payment_number) VALUES (%s)", (payment_number,))

                if bill_id:
                    bill = load_bill(cur, bill_id, for_update=True)
                    if not bill:
                        raise HTTPException(status_code=404, detail="Bill not found")
                    if customer_id and str(bill.get("customer_id") or "") != customer_id:
                        raise HTTPException(status_code=400, detail="Bill does not belong to customer")
                    assert_within_outstanding(amount, bill_balance(bill).remaining(data.currency))
                    created = [_insert_payment(cur, bill_id, amount, data, payment_number)]
                    refresh_bill_status(cur, bill_id)
                    json_log("info", "payment.created", bill_id=bill_id, currency=data.currency, amount=amount)
                    return to_jsonable({"payments": created})

                cur.execute(
                    "SELECT id, initial_debt_afn, initial_debt_usd FROM customers WHERE id = %s FOR UPDATE",
                    (customer_id,),
                )
                customer = cur.fetchone()
                if not customer:
                    raise HTTPException(status_code=404, detail="Customer not found")
                bills = load_customer_bills(cur, [customer_id], for_update=True)
                initial_debt = customer["initial_debt_afn"] if data.currency == "AFN" else customer["initial_debt_usd"]
                plan = plan_customer_payment(bills, data.currency, amount, initial_debt)

                created = []
                for alloc in plan.allocations:
                    target_id = alloc.bill_id
                    if target_id is None:
                        cur.execute(
                            """
                            INSERT INTO bills (id, customer_id, kind, status, sherkat_stock, bill_date, note)
                            VALUES (gen_random_uuid(), %s, %s, 'PARTIAL', true, now(), %s)
                            RETURNING id
                            """,
                            (customer_id, INITIAL_DEBT_ADJUSTMENT, INITIAL_DEBT_NOTE),
                        )
                        target_id = str(cur.fetchone()["id"])
                    created.append(_insert_payment(cur, target_id, alloc.amount, data, payment_number))
                    if alloc.bill_id is not None:
                        refresh_bill_status(cur, target_id)

                json_log(
                    "info",
                    "payment.allocated",
                    customer_id=customer_id,
                    currency=data.currency,
                    amount=amount,
                    bills=len([a for a in plan.allocations if a.bill_id]),
                    initial_debt_amount=plan.initial_debt_amount,
                )
                return to_jsonable({"payments": created})


@router.delete("/{payment_id}")
def delete_payment(payment_id: str):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, bill_id, payment_number FROM payments WHERE id = %s FOR UPDATE", (payment_id,)
                )
                payment = cur.fetchone()
                if not payment:
                    raise HTTPException(status_code=404, detail="Payment not found")
                bill_id = str(payment["bill_id"])
                cur.execute("DELETE FROM payments WHERE id = %s", (payment_id,))
                if payment.get("payment_number"):
                    # Free the number once no allocated row still carries it.
                    cur.execute(
                        """
                        DELETE FROM payment_receipts r
                        WHERE r.payment_number = %s
                          AND NOT EXISTS (SELECT 1 FROM payments p WHERE p.payment_number = r.payment_number)
                        """,
                        (payment["payment_number"],),
                    )

                bill = load_bill(cur, bill_id, for_update=True)
                bill_removed = False
                if bill and bill_kind(bill) in SYSTEM_KINDS and not bill["items"] and not bill["payments"]:
                    cur.execute("DELETE FROM bills WHERE id = %s", (bill_id,))
                    bill_removed = True
                else:
                    refresh_bill_status(cur, bill_id)

                json_log("info", "payment.deleted", payment_id=payment_id, bill_id=bill_id, bill_removed=bill_removed)
                return {"success": True, "bill_removed": bill_removed}
