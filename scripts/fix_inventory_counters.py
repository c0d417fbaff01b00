#!/usr/bin/env python3
# scripts/fix_inventory_counters.py
import argparse
import logging
import os


def use_database(path) -> None:
    if not path:
        return
    # APP_DATABASE_URL takes precedence over APP_DB_PATH in db.py
    os.environ.pop("APP_DATABASE_URL", None)
    os.environ["APP_DB_PATH"] = path


def main() -> None:
    ap = argparse.ArgumentParser(
        description="Recompute stock loaned counters and asset PRETE flags from active loans."
    )
    ap.add_argument(
        "--db",
        help="Path to SQLite DB; overrides APP_DATABASE_URL and APP_DB_PATH (default: data/loans.db)",
    )
    ap.add_argument("--dry-run", action="store_true", help="Report the differences without saving them")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    logger = logging.getLogger("fix_inventory_counters")

    use_database(args.db)

    # the engine is built at import time from the environment
    import db as database
    import loans

    session = database.SessionLocal()
    try:
        report = loans.reconcile_inventory(session, commit=False)
        for change in report["stock_items"]:
            logger.warning(
                "stock_item=%s loaned %s -> %s",
                change["id"], change["loaned_before"], change["loaned_after"],
            )
        for change in report["asset_items"]:
            logger.warning(
                "asset_item=%s status %s -> %s",
                change["id"], change["status_before"], change["status_after"],
            )

        if args.dry_run:
            session.rollback()
            logger.info("Dry run, nothing saved")
        else:
            session.commit()
            logger.info(
                "Fixed stock_items=%s asset_items=%s",
                len(report["stock_items"]),
                len(report["asset_items"]),
            )
    finally:
        session.close()


if __name__ == "__main__":
    main()
