import math
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..encoding import to_jsonable
from ..logs import json_log
from ..validation import clean_text

router = APIRouter(prefix="/stocks", tags=["stocks"])


class ContainerItemIn(BaseModel):
    product_id: Optional[str] = None
    quantity_change: Optional[float] = None
    leak_packages: Optional[float] = None


class StockIn(BaseModel):
    product_id: Optional[str] = None
    quantity_change: Optional[float] = None
    note: Optional[str] = None
    is_container: bool = False
    container_number: Optional[str] = None
    driver_name: Optional[str] = None
    bill_of_lading_number: Optional[str] = None
    arrival_date: Optional[datetime] = None
    leak_packages: Optional[float] = None
    items: Optional[List[ContainerItemIn]] = None


def _whole(value: Optional[float]) -> Optional[int]:
    # Truncates toward zero, so -2.7 becomes -2.
    if value is None or not math.isfinite(value):
        return None
    return int(value)


def movement_type(quantity_change: int) -> str:
    return "IN" if quantity_change > 0 else "OUT"


def _insert_movement(cur, data: StockIn, product_id: str, quantity: int, leak: Optional[int], *, container: bool):
    cur.execute(
        """
        INSERT INTO stocks
          (id, product_id, quantity_change, movement_type, source_type, is_container,
           container_number, driver_name, bill_of_lading_number, arrival_date, leak_packages, note)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            product_id,
            quantity,
            movement_type(quantity),
            "CONTAINER" if container else "MANUAL",
            container,
            clean_text(data.container_number),
            clean_text(data.driver_name),
            clean_text(data.bill_of_lading_number),
            data.arrival_date,
            leak,
            data.note,
        ),
    )


@router.post("", status_code=201)
def create_stock_movement(data: StockIn):
    if data.is_container and data.items:
        entries = []
        for it in data.items:
            product_id = clean_text(it.product_id)
            quantity = _whole(it.quantity_change)
            if not product_id or not quantity:
                continue
            entries.append((product_id, quantity, _whole(it.leak_packages)))
        if not entries:
            raise HTTPException(status_code=400, detail="Container items are required")
        with get_conn() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    for product_id, quantity, leak in entries:
                        _insert_movement(cur, data, product_id, quantity, leak, container=True)
        json_log(
            "info",
            "stock.container_received",
            container_number=clean_text(data.container_number),
            rows=len(entries),
        )
        return {"success": True, "createdCount": len(entries)}

    product_id = clean_text(data.product_id)
    if not product_id:
        raise HTTPException(status_code=400, detail="Product id is required")
    quantity = _whole(data.quantity_change)
    if not quantity:
        raise HTTPException(status_code=400, detail="Quantity change must be a non-zero number")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                _insert_movement(
                    cur, data, product_id, quantity, _whole(data.leak_packages), container=data.is_container
                )
    json_log("info", "stock.recorded", product_id=product_id, quantity_change=quantity)
    return {"success": True, "createdCount": 1}


@router.get("")
def stock_levels():
    # Always summed from the movement history; there is no stored balance.
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT p.id AS product_id, p.name AS product_name,
                       COALESCE(SUM(s.quantity_change), 0)::int AS packages_available
                FROM products p
                LEFT JOIN stocks s ON s.product_id = p.id
                GROUP BY p.id, p.name
                ORDER BY p.name
                """
            )
            return to_jsonable({"stocks": cur.fetchall()})


@router.get("/{product_id}")
def stock_history(product_id: str):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id, name FROM products WHERE id = %s", (product_id,))
            product = cur.fetchone()
            if not product:
                raise HTTPException(status_code=404, detail="Product not found")
            cur.execute(
                """
                SELECT id, quantity_change, movement_type, source_type, is_container,
                       container_number, driver_name, bill_of_lading_number, arrival_date,
                       leak_packages, note, bill_id, created_at
                FROM stocks
                WHERE product_id = %s
                ORDER BY created_at DESC
                """,
                (product_id,),
            )
            history = cur.fetchall() or []
            return to_jsonable(
                {
                    "product_id": product["id"],
                    "product_name": product["name"],
                    "packages_available": sum(int(h["quantity_change"]) for h in history),
                    "history": history,
                }
            )
