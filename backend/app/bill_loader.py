from __future__ import annotations

from typing import Optional

from .ledger import INVOICE, bill_balance, bill_kind

BILL_COLUMNS = """
    b.id, b.customer_id, b.temp_customer_name, b.bill_number, b.kind, b.status,
    b.sherkat_stock, b.mandawi_check, b.mandawi_check_number,
    b.bill_date, b.note, b.paid_afn, b.paid_usd, b.created_at
"""


def attach_lines(cur, bills: list[dict], *, with_product: bool = False) -> list[dict]:
    """
    Fetch items and payments for the given bills in two round trips and
    attach them as bill["items"] / bill["payments"].
    """
    for b in bills:
        b["items"] = []
        b["payments"] = []
    if not bills:
        return bills
    by_id = {str(b["id"]): b for b in bills}
    ids = list(by_id.keys())

    if with_product:
        cur.execute(
            """
            SELECT bi.id, bi.bill_id, bi.product_id, bi.number_of_packages, bi.unit_price,
                   bi.currency, bi.total_amount,
                   p.name AS product_name
            FROM bill_items bi
            LEFT JOIN products p ON p.id = bi.product_id
            WHERE bi.bill_id = ANY(%s::uuid[])
            ORDER BY bi.id
            """,
            (ids,),
        )
    else:
        cur.execute(
            """
            SELECT bi.id, bi.bill_id, bi.product_id, bi.number_of_packages, bi.unit_price,
                   bi.currency, bi.total_amount
            FROM bill_items bi
            WHERE bi.bill_id = ANY(%s::uuid[])
            ORDER BY bi.id
            """,
            (ids,),
        )
    for r in cur.fetchall() or []:
        bill = by_id.get(str(r["bill_id"]))
        if bill is not None:
            bill["items"].append(r)

    cur.execute(
        """
        SELECT id, bill_id, payment_number, amount_paid, currency, payment_date, payment_method, note
        FROM payments
        WHERE bill_id = ANY(%s::uuid[])
        ORDER BY payment_date ASC
        """,
        (ids,),
    )
    for r in cur.fetchall() or []:
        bill = by_id.get(str(r["bill_id"]))
        if bill is not None:
            bill["payments"].append(r)
    return bills


def load_customer_bills(cur, customer_ids: list[str], *, oldest_first: bool = True, for_update: bool = False) -> list[dict]:
    if not customer_ids:
        return []
    direction = "ASC" if oldest_first else "DESC"
    lock = "FOR UPDATE" if for_update else ""
    cur.execute(
        f"""
        SELECT {BILL_COLUMNS}
        FROM bills b
        WHERE b.customer_id = ANY(%s::uuid[])
        ORDER BY b.bill_date {direction}, b.created_at {direction}
        {lock}
        """,
        ([str(x) for x in customer_ids],),
    )
    return attach_lines(cur, cur.fetchall() or [], with_product=not for_update)


def load_bill(cur, bill_id: str, *, for_update: bool = False, with_product: bool = False) -> Optional[dict]:
    lock = "FOR UPDATE" if for_update else ""
    cur.execute(
        f"""
        SELECT {BILL_COLUMNS}
        FROM bills b
        WHERE b.id = %s
        {lock}
        """,
        (bill_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    attach_lines(cur, [row], with_product=with_product)
    return row


def refresh_bill_status(cur, bill_id: str) -> Optional[str]:
    """
    Recompute and persist an invoice's status from its items and payments.
    System adjustment bills keep whatever status they were created with.
    """
    bill = load_bill(cur, bill_id)
    if not bill or bill_kind(bill) != INVOICE:
        return None
    status = bill_balance(bill).status
    if status != bill.get("status"):
        cur.execute("UPDATE bills SET status = %s WHERE id = %s", (status, bill_id))
    return status
