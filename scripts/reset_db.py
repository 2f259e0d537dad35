#!/usr/bin/env python3
"""
Drop and recreate the workflow schema.

Uses PROCURE_DATABASE_URL if set, otherwise the configured database_url.
Audit-log immutability triggers are installed on PostgreSQL.

Usage:
    python3 scripts/reset_db.py [--config-set NAME] [--yes]
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Drop all tables and recreate the schema")
    p.add_argument("--config-set", default="default")
    p.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    args = p.parse_args(argv)

    from procure_config import get_active_config
    from procure_kernel.db.engine import create_tables, drop_tables, init_engine_from_url

    settings = get_active_config(args.config_set)
    if not args.yes:
        answer = input(f"Drop every table in {settings.database_url}? [y/N] ")
        if answer.strip().lower() != "y":
            print("Aborted.")
            return 1

    init_engine_from_url(settings.database_url)
    drop_tables()
    create_tables()
    print("Schema recreated.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
