#!/usr/bin/env python3
import argparse
import os
import sys
from pathlib import Path

import psycopg

ROOT = Path(__file__).resolve().parents[2]
MIGRATIONS_DIR = ROOT / "backend" / "db" / "migrations"
DB_URL_DEFAULT = os.getenv("DATABASE_URL", "postgresql://localhost/hesab")


def migration_files(directory: Path = MIGRATIONS_DIR) -> list[Path]:
    # Numbered prefixes (001_, 002_, ...) define the apply order.
    return sorted(p for p in directory.glob("*.sql") if p.is_file())


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply the SQL schema migrations in order.")
    parser.add_argument("--db", default=DB_URL_DEFAULT)
    args = parser.parse_args()

    files = migration_files()
    if not files:
        print(f"apply_migrations: no .sql files in {MIGRATIONS_DIR}", file=sys.stderr)
        return 2

    with psycopg.connect(args.db) as conn:
        for path in files:
            # Every statement is idempotent (IF NOT EXISTS / duplicate_object guards).
            with conn.transaction():
                conn.execute(path.read_text(encoding="utf-8"))
            print(f"applied {path.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
