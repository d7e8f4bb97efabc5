from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from ..db import get_conn
from ..encoding import to_jsonable
from ..ledger import kind_from_note
from ..logs import json_log
from ..validation import BillKind, BillStatus, CurrencyCode, StockMovementType, StockSourceType

router = APIRouter(prefix="/backup", tags=["backup"])

BACKUP_VERSION = 1


class CustomerRow(BaseModel):
    id: str
    name: str
    phone: str
    address: Optional[str] = None
    note: Optional[str] = None
    initial_debt_afn: Decimal = Decimal("0")
    initial_debt_usd: Decimal = Decimal("0")
    order_index: int = 0
    created_at: datetime


class CategoryRow(BaseModel):
    id: str
    name: str
    created_at: datetime


class ProductRow(BaseModel):
    id: str
    name: str
    current_price_per_package: Decimal
    currency_type: CurrencyCode
    category_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BillRow(BaseModel):
    id: str
    customer_id: Optional[str] = None
    temp_customer_name: Optional[str] = None
    bill_number: Optional[str] = None
    kind: Optional[BillKind] = None
    status: BillStatus
    sherkat_stock: bool = False
    mandawi_check: bool = False
    mandawi_check_number: Optional[str] = None
    bill_date: datetime
    note: Optional[str] = None
    paid_afn: Decimal = Decimal("0")
    paid_usd: Decimal = Decimal("0")
    created_at: datetime


class BillItemRow(BaseModel):
    id: str
    bill_id: str
    product_id: str
    number_of_packages: int
    unit_price: Decimal
    currency: CurrencyCode
    total_amount: Decimal


class PaymentRow(BaseModel):
    id: str
    bill_id: str
    payment_number: Optional[str] = None
    amount_paid: Decimal
    currency: CurrencyCode
    payment_date: datetime
    payment_method: str = "Manual"
    note: Optional[str] = None


class StockRow(BaseModel):
    id: str
    product_id: str
    bill_id: Optional[str] = None
    quantity_change: int
    movement_type: StockMovementType
    source_type: StockSourceType
    is_container: bool = False
    container_number: Optional[str] = None
    driver_name: Optional[str] = None
    bill_of_lading_number: Optional[str] = None
    arrival_date: Optional[datetime] = None
    leak_packages: Optional[int] = None
    note: Optional[str] = None
    created_at: datetime


class BackupData(BaseModel):
    customers: List[CustomerRow]
    categories: List[CategoryRow]
    products: List[ProductRow]
    bills: List[BillRow]
    bill_items: List[BillItemRow]
    payments: List[PaymentRow]
    stocks: List[StockRow]


class BackupIn(BaseModel):
    data: BackupData


# Insert order respects foreign keys; deletion runs in reverse.
TABLES = [
    ("customers", CustomerRow),
    ("categories", CategoryRow),
    ("products", ProductRow),
    ("bills", BillRow),
    ("bill_items", BillItemRow),
    ("payments", PaymentRow),
    ("stocks", StockRow),
]

DELETE_ORDER = ["stocks", "bill_items", "payments", "bills", "products", "categories", "customers"]


def _columns(model) -> list[str]:
    return list(model.model_fields.keys())


@router.get("/export")
def export_backup():
    data = {}
    with get_conn() as conn:
        with conn.cursor() as cur:
            for table, model in TABLES:
                cur.execute(f"SELECT {', '.join(_columns(model))} FROM {table} ORDER BY id")
                data[table] = cur.fetchall() or []
    json_log("info", "backup.exported", **{t: len(rows) for t, rows in data.items()})
    return to_jsonable(
        {
            "meta": {"exported_at": datetime.now(timezone.utc), "version": BACKUP_VERSION},
            "data": data,
        }
    )


@router.post("/import")
def import_backup(payload: BackupIn):
    rows_by_table = {}
    for table, model in TABLES:
        rows = [r.model_dump() for r in getattr(payload.data, table)]
        if table == "bills":
            for r in rows:
                r["kind"] = r.get("kind") or kind_from_note(r.get("note"))
        rows_by_table[table] = rows

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                for table in DELETE_ORDER:
                    cur.execute(f"DELETE FROM {table}")
                for table, model in TABLES:
                    rows = rows_by_table[table]
                    if not rows:
                        continue
                    cols = _columns(model)
                    placeholders = ", ".join(["%s"] * len(cols))
                    cur.executemany(
                        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders})",
                        [tuple(r[c] for c in cols) for r in rows],
                    )
                cur.execute("DELETE FROM payment_receipts")
                cur.execute(
                    """
                    INSERT INTO payment_receipts (payment_number)
                    SELECT DISTINCT payment_number FROM payments WHERE payment_number IS NOT NULL
                    """
                )

    counts = {table: len(rows) for table, rows in rows_by_table.items()}
    json_log("info", "backup.imported", **counts)
    return {"success": True, "counts": counts}
