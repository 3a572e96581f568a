from __future__ import annotations

import argparse
import logging
from pathlib import Path

from checkin.config import Settings, load_dotenv_file
from checkin.seed import reset_store, seed_sample_data
from checkin.store import build_store


def main() -> None:
    parser = argparse.ArgumentParser(description="Reset and seed the check-in store")
    parser.add_argument(
        "--reset-only", action="store_true", help="clear all users, events and memberships"
    )
    args = parser.parse_args()

    load_dotenv_file(Path(__file__).resolve().parents[2])
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")

    if settings.store_backend == "inmemory":
        raise SystemExit("STORE_BACKEND=inmemory has nothing to seed; use sql or dynamodb")

    store = build_store(settings)
    try:
        if args.reset_only:
            reset_store(store)
            print("Store reset")
            return
        for event in seed_sample_data(store):
            print(f"{event.name}: {store.count_members(event.id)} attendees")
    finally:
        store.close()


if __name__ == "__main__":
    main()
