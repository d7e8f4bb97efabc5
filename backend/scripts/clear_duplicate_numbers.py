#!/usr/bin/env python3
import argparse
import os
import sys

import psycopg
from psycopg.rows import dict_row

DB_URL_DEFAULT = os.getenv("DATABASE_URL", "postgresql://localhost/hesab")


def duplicate_bill_ids(rows: list[dict]) -> list[str]:
    """
    rows: bills with a bill_number, ordered by created_at ascending.
    The oldest bill keeps its number; every later bill with the same number is returned.
    """
    seen = set()
    out = []
    for r in rows:
        if r["bill_number"] in seen:
            out.append(str(r["id"]))
        else:
            seen.add(r["bill_number"])
    return out


def duplicate_payment_ids(rows: list[dict]) -> list[str]:
    """
    rows: payments with a payment_number, ordered by payment_date ascending.
    One receipt allocated over several bills is written in a single transaction and
    shares a payment_date, so every row of the oldest receipt keeps the number.
    """
    first_date = {}
    out = []
    for r in rows:
        number = r["payment_number"]
        if number not in first_date:
            first_date[number] = r["payment_date"]
        elif r["payment_date"] != first_date[number]:
            out.append(str(r["id"]))
    return out


def main() -> int:
    parser = argparse.ArgumentParser(description="Null out duplicated bill and payment numbers in legacy data.")
    parser.add_argument("--db", default=DB_URL_DEFAULT)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, bill_number
                    FROM bills
                    WHERE bill_number IN (
                      SELECT bill_number FROM bills
                      WHERE bill_number IS NOT NULL
                      GROUP BY bill_number HAVING COUNT(*) > 1
                    )
                    ORDER BY bill_number, created_at ASC, id
                    """
                )
                bill_ids = duplicate_bill_ids(cur.fetchall())

                cur.execute(
                    """
                    SELECT id, payment_number, payment_date
                    FROM payments
                    WHERE payment_number IN (
                      SELECT payment_number FROM payments
                      WHERE payment_number IS NOT NULL
                      GROUP BY payment_number HAVING COUNT(*) > 1
                    )
                    ORDER BY payment_number, payment_date ASC, id
                    """
                )
                payment_ids = duplicate_payment_ids(cur.fetchall())

                if not args.dry_run:
                    if bill_ids:
                        cur.execute("UPDATE bills SET bill_number = NULL WHERE id = ANY(%s::uuid[])", (bill_ids,))
                    if payment_ids:
                        cur.execute(
                            "UPDATE payments SET payment_number = NULL WHERE id = ANY(%s::uuid[])",
                            (payment_ids,),
                        )

    verb = "Would clear" if args.dry_run else "Cleared"
    print(f"{verb} {len(bill_ids)} duplicate bill numbers and {len(payment_ids)} duplicate payment numbers.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
