from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..config import settings
from ..db import get_conn
from ..encoding import to_jsonable
from ..logs import json_log
from ..validation import CurrencyCode, clean_text, parse_positive_int

router = APIRouter(prefix="/products", tags=["products"])

PRODUCT_COLUMNS = "id, name, current_price_per_package, currency_type, category_id, created_at, updated_at"


class ProductIn(BaseModel):
    name: str
    current_price_per_package: Decimal
    currency_type: CurrencyCode
    category_id: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    current_price_per_package: Optional[Decimal] = None
    currency_type: Optional[CurrencyCode] = None
    category_id: Optional[str] = None


def _validate_price(price: Decimal) -> Decimal:
    if not price.is_finite():
        raise HTTPException(status_code=400, detail="Price must be a number")
    if price <= 0:
        raise HTTPException(status_code=400, detail="Price must be a positive number")
    return price


@router.get("")
def list_products():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {PRODUCT_COLUMNS} FROM products ORDER BY name")
            return to_jsonable({"products": cur.fetchall()})


@router.get("/paged")
def list_products_paged(page: Optional[str] = None, pageSize: Optional[str] = None):
    page_n = parse_positive_int(page, 1, max_value=10**6)
    size = parse_positive_int(pageSize, 10, max_value=settings.page_size_max)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT COUNT(*)::int AS total FROM products")
            total = cur.fetchone()["total"]
            cur.execute(
                f"""
                SELECT {PRODUCT_COLUMNS}
                FROM products
                ORDER BY name
                LIMIT %s OFFSET %s
                """,
                (size, (page_n - 1) * size),
            )
            return to_jsonable({"items": cur.fetchall(), "total": total, "page": page_n, "pageSize": size})


@router.post("", status_code=201)
def create_product(data: ProductIn):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Product name is required")
    price = _validate_price(data.current_price_per_package)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO products (id, name, current_price_per_package, currency_type, category_id)
                VALUES (gen_random_uuid(), %s, %s, %s, %s)
                RETURNING {PRODUCT_COLUMNS}
                """,
                (name, price, data.currency_type, clean_text(data.category_id)),
            )
            row = cur.fetchone()
            json_log("info", "product.created", product_id=str(row["id"]))
            return to_jsonable(row)


@router.put("/{product_id}")
def update_product(product_id: str, data: ProductUpdate):
    # Bills snapshot unit prices, so a price change only affects future bills.
    patch = data.model_dump(exclude_unset=True)
    fields = []
    params = []
    if patch.get("name") is not None:
        name = patch["name"].strip()
        if not name:
            raise HTTPException(status_code=400, detail="Product name is required")
        fields.append("name = %s")
        params.append(name)
    if patch.get("current_price_per_package") is not None:
        fields.append("current_price_per_package = %s")
        params.append(_validate_price(patch["current_price_per_package"]))
    if patch.get("currency_type") is not None:
        fields.append("currency_type = %s")
        params.append(patch["currency_type"])
    if "category_id" in patch:
        fields.append("category_id = %s")
        params.append(clean_text(patch["category_id"]))
    if not fields:
        raise HTTPException(status_code=400, detail="Nothing to update")

    params.append(product_id)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                UPDATE products
                SET {', '.join(fields)}, updated_at = now()
                WHERE id = %s
                RETURNING {PRODUCT_COLUMNS}
                """,
                params,
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="Product not found")
            return to_jsonable(row)


@router.delete("/{product_id}")
def delete_product(product_id: str):
    # Products referenced by bill items or stock rows fail with a foreign key violation (400).
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM products WHERE id = %s RETURNING id", (product_id,))
            if not cur.fetchone():
                raise HTTPException(status_code=404, detail="Product not found")
            json_log("info", "product.deleted", product_id=product_id)
            return {"success": True}
