from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..db import get_conn
from ..encoding import to_jsonable
from ..logs import json_log

router = APIRouter(prefix="/categories", tags=["categories"])


class CategoryIn(BaseModel):
    name: str


@router.get("")
def list_categories():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, name, created_at
                FROM categories
                ORDER BY name
                """
            )
            return to_jsonable({"categories": cur.fetchall()})


@router.post("", status_code=201)
def create_category(data: CategoryIn):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO categories (id, name)
                VALUES (gen_random_uuid(), %s)
                RETURNING id, name, created_at
                """,
                (name,),
            )
            row = cur.fetchone()
            json_log("info", "category.created", category_id=str(row["id"]))
            return to_jsonable(row)


@router.patch("/{category_id}")
def update_category(category_id: str, data: CategoryIn):
    name = (data.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE categories
                SET name = %s
                WHERE id = %s
                RETURNING id, name, created_at
                """,
                (name, category_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="Category not found")
            return to_jsonable(row)


@router.delete("/{category_id}")
def delete_category(category_id: str):
    # products.category_id is ON DELETE SET NULL; products survive their category.
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM categories WHERE id = %s RETURNING id", (category_id,))
            if not cur.fetchone():
                raise HTTPException(status_code=404, detail="Category not found")
            json_log("info", "category.deleted", category_id=category_id)
            return {"success": True}
