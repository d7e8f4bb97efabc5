from fastapi import APIRouter

from ..bill_loader import BILL_COLUMNS, attach_lines
from ..db import get_conn
from ..encoding import to_jsonable
from ..ledger import ZERO, to_decimal

router = APIRouter(prefix="/reports", tags=["reports"])


def build_mandawi_report(bills: list[dict]) -> dict:
    """
    Aggregate bills settled through a mandawi (third-party account) by product.

    Bills with a check number count as check bills, the rest as hesab
    (account) bills. Product rows are ordered by packages sold, largest first.
    """
    total_bills = 0
    check_bills = 0
    rows: dict[str, dict] = {}
    for b in bills or []:
        if not b.get("mandawi_check"):
            continue
        total_bills += 1
        if b.get("mandawi_check_number"):
            check_bills += 1
        for it in b.get("items") or []:
            key = str(it["product_id"])
            row = rows.get(key)
            if row is None:
                row = {
                    "product_id": key,
                    "product_name": it.get("product_name"),
                    "packages_sold": 0,
                    "total_afn": ZERO,
                    "total_usd": ZERO,
                }
                rows[key] = row
            row["packages_sold"] += int(it.get("number_of_packages") or 0)
            amount = to_decimal(it.get("total_amount"))
            if it.get("currency") == "AFN":
                row["total_afn"] += amount
            elif it.get("currency") == "USD":
                row["total_usd"] += amount

    products = sorted(rows.values(), key=lambda r: r["packages_sold"], reverse=True)
    totals = {
        "packages": sum(r["packages_sold"] for r in products),
        "total_afn": sum((r["total_afn"] for r in products), ZERO),
        "total_usd": sum((r["total_usd"] for r in products), ZERO),
    }
    return {
        "total_bills": total_bills,
        "check_bills": check_bills,
        "hesab_bills": total_bills - check_bills,
        "products": products,
        "totals": totals,
    }


@router.get("/mandawi")
def mandawi_report():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {BILL_COLUMNS}
                FROM bills b
                WHERE b.mandawi_check = true
                ORDER BY b.bill_date DESC
                """
            )
            bills = attach_lines(cur, cur.fetchall() or [], with_product=True)
            return to_jsonable(build_mandawi_report(bills))
