from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..bill_loader import load_customer_bills
from ..config import settings
from ..db import get_conn
from ..encoding import to_jsonable
from ..ledger import ZERO, bill_balance, bill_kind, debts_by_customer
from ..logs import json_log
from ..validation import clean_text, parse_positive_int

router = APIRouter(prefix="/customers", tags=["customers"])

CUSTOMER_COLUMNS = "id, name, phone, address, note, initial_debt_afn, initial_debt_usd, order_index, created_at"


class CustomerIn(BaseModel):
    name: str
    phone: str
    address: Optional[str] = None
    note: Optional[str] = None
    initial_debt_afn: Optional[Decimal] = None
    initial_debt_usd: Optional[Decimal] = None


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    note: Optional[str] = None
    initial_debt_afn: Optional[Decimal] = None
    initial_debt_usd: Optional[Decimal] = None


def _initial_debt(value: Optional[Decimal], label: str) -> Decimal:
    if value is None:
        return ZERO
    if not value.is_finite() or value < 0:
        raise HTTPException(status_code=400, detail=f"Initial debt {label} must be a non-negative number")
    return value


def _with_debts(cur, customers: list[dict]) -> list[dict]:
    bills = load_customer_bills(cur, [str(c["id"]) for c in customers])
    debts = debts_by_customer(customers, bills)
    for c in customers:
        c.update(debts[str(c["id"])].as_dict())
    return customers


def _bill_summary(bill: dict) -> dict:
    bal = bill_balance(bill)
    bill["kind"] = bill_kind(bill)
    bill["status"] = bal.status
    bill["total_afn"] = bal.total_afn
    bill["total_usd"] = bal.total_usd
    bill["paid_afn"] = bal.paid_afn
    bill["paid_usd"] = bal.paid_usd
    bill["remaining_afn"] = bal.remaining("AFN")
    bill["remaining_usd"] = bal.remaining("USD")
    return bill


@router.get("")
def list_customers():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {CUSTOMER_COLUMNS} FROM customers ORDER BY order_index, created_at")
            customers = cur.fetchall() or []
            return to_jsonable({"customers": _with_debts(cur, customers)})


@router.get("/paged")
def list_customers_paged(page: Optional[str] = None, pageSize: Optional[str] = None, search: Optional[str] = None):
    page_n = parse_positive_int(page, 1, max_value=10**6)
    size = parse_positive_int(pageSize, 10, max_value=settings.page_size_max)
    q = (search or "").strip()
    where = ""
    params: list = []
    if q:
        where = "WHERE name ILIKE %s"
        params.append(f"%{q}%")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*)::int AS total FROM customers {where}", params)
            total = cur.fetchone()["total"]
            cur.execute(
                f"""
                SELECT {CUSTOMER_COLUMNS}
                FROM customers
                {where}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                params + [size, (page_n - 1) * size],
            )
            customers = cur.fetchall() or []
            return to_jsonable(
                {"items": _with_debts(cur, customers), "total": total, "page": page_n, "pageSize": size}
            )


@router.get("/{customer_id}")
def get_customer(customer_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {CUSTOMER_COLUMNS} FROM customers WHERE id = %s", (customer_id,))
            customer = cur.fetchone()
            if not customer:
                raise HTTPException(status_code=404, detail="Customer not found")
            bills = load_customer_bills(cur, [customer_id], oldest_first=False)
            debts = debts_by_customer([customer], bills)
            customer.update(debts[str(customer["id"])].as_dict())
            customer["bills"] = [_bill_summary(b) for b in bills]
            return to_jsonable(customer)


@router.post("", status_code=201)
def create_customer(data: CustomerIn):
    name = (data.name or "").strip()
    phone = (data.phone or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    if not phone:
        raise HTTPException(status_code=400, detail="Phone is required")
    debt_afn = _initial_debt(data.initial_debt_afn, "AFN")
    debt_usd = _initial_debt(data.initial_debt_usd, "USD")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT COALESCE(MAX(order_index), -1) + 1 AS next_index FROM customers")
                next_index = cur.fetchone()["next_index"]
                cur.execute(
                    f"""
                    INSERT INTO customers
                      (id, name, phone, address, note, initial_debt_afn, initial_debt_usd, order_index)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {CUSTOMER_COLUMNS}
                    """,
                    (name, phone, clean_text(data.address), clean_text(data.note), debt_afn, debt_usd, next_index),
                )
                row = cur.fetchone()
                json_log("info", "customer.created", customer_id=str(row["id"]))
                return to_jsonable(row)


@router.put("/{customer_id}")
def update_customer(customer_id: str, data: CustomerUpdate):
    patch = data.model_dump(exclude_unset=True)
    fields = []
    params = []
    for key, label in (("name", "Name"), ("phone", "Phone")):
        if patch.get(key) is not None:
            value = patch[key].strip()
            if not value:
                raise HTTPException(status_code=400, detail=f"{label} is required")
            fields.append(f"{key} = %s")
            params.append(value)
    for key in ("address", "note"):
        if key in patch:
            fields.append(f"{key} = %s")
            params.append(clean_text(patch[key]))
    for key, label in (("initial_debt_afn", "AFN"), ("initial_debt_usd", "USD")):
        if patch.get(key) is not None:
            fields.append(f"{key} = %s")
            params.append(_initial_debt(patch[key], label))
    if not fields:
        raise HTTPException(status_code=400, detail="Nothing to update")

    params.append(customer_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE customers
                SET {', '.join(fields)}
                WHERE id = %s
                RETURNING {CUSTOMER_COLUMNS}
                """,
                params,
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="Customer not found")
            json_log("info", "customer.updated", customer_id=customer_id, fields=sorted(patch.keys()))
            return to_jsonable(row)
