#!/usr/bin/env python3
"""
Removes bids left behind on jobs that are no longer open.

Confirmation and AutoFill claims clear the bid ledger in a second step; when
that step fails the job stays confirmed and the bids linger. This script
cleans them up and reports jobs whose provider assignment disagrees with
their status.

Usage:
  export DATABASE_URL="postgresql://..."
  PYTHONPATH=. python scripts/purge_stale_bids.py --dry-run
  PYTHONPATH=. python scripts/purge_stale_bids.py
"""

from __future__ import annotations

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.dependencies import SessionLocal
from app.services.service_workflow import count_stale_bids, find_inconsistent_assignments, purge_stale_bids


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge bids lingering on closed jobs.")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would be removed.")
    args = parser.parse_args()

    if SessionLocal is None:
        print("Error: DATABASE_URL is not set.", file=sys.stderr)
        sys.exit(1)

    db = SessionLocal()
    try:
        for service in find_inconsistent_assignments(db):
            print(
                f"Inconsistent assignment: service={service.service_id} "
                f"status={service.status} provider={service.service_provider_id}"
            )

        count = count_stale_bids(db)
        if count == 0:
            print("Stale bids: 0. Nothing to purge.")
            return
        if args.dry_run:
            print(f"Dry-run: would remove {count} stale bid(s).")
            return
        print(f"Removed {purge_stale_bids(db)} stale bid(s).")
    finally:
        db.close()


if __name__ == "__main__":
    main()
