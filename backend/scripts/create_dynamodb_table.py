from __future__ import annotations

import argparse
import logging
from pathlib import Path

from checkin.config import Settings, load_dotenv_file
from checkin.store import DynamoDBStore


def main() -> None:
    load_dotenv_file(Path(__file__).resolve().parents[2])
    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="Create the check-in DynamoDB table")
    parser.add_argument(
        "--table-name",
        default=settings.ddb_table_name.strip(),
        help="defaults to $DDB_TABLE_NAME",
    )
    parser.add_argument("--no-wait", action="store_true", help="do not wait for ACTIVE")
    args = parser.parse_args()
    if not args.table_name:
        raise SystemExit("DDB_TABLE_NAME is required")

    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")

    store = DynamoDBStore(table_name=args.table_name)
    if store.ensure_table(wait=not args.no_wait):
        print(f"Created table: {args.table_name}")
    else:
        print(f"Table already exists: {args.table_name}")


if __name__ == "__main__":
    main()
