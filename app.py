#!/usr/bin/env python3
"""Influencer program - command line entry point

Runs the program engines against the configured database and prints JSON.

Usage:
    python app.py init-db
    python app.py cycle
    python app.py import-sales vendas.csv            # preview only
    python app.py import-sales vendas.csv --confirm  # insert the valid rows
    python app.py dashboard                          # master view
    python app.py dashboard --influencer 3
    python app.py snapshot                           # freeze commissions

Environment variables (read from .env):
    DATABASE_URL      Database connection URL
    POINT_VALUE_BRL   Value of one point in reais (default 0.1)
    LOG_LEVEL         Log level (default INFO)
    LOG_FILE          Optional log file
"""
import argparse
import json
import sys

from loguru import logger

from config.settings import settings


def setup_logging():
    """Configure loguru sinks from settings"""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level.upper(),
                   rotation="10 MB", retention="30 days", encoding="utf-8")


def _print(data):
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def cmd_init_db(db, args):
    from scripts.init_db import init_database
    init_database(db)
    return {"database": db.database_url, "status": "ready"}


def cmd_cycle(db, args):
    from business.cycles import CycleManager
    cycles = CycleManager(db)
    cycle = cycles.get_cycle_by_id_or_current(args.cycle_id)
    return cycles.cycle_summary(cycle)


def cmd_import_sales(db, args):
    from business.sales import SalesService
    with open(args.file, encoding="utf-8-sig") as f:
        text = f.read()

    sales = SalesService(db)
    if args.confirm:
        return sales.confirm_import(text).model_dump(by_alias=True)
    return sales.preview_import(text).model_dump(by_alias=True)


def cmd_dashboard(db, args):
    from business.cycles import CycleManager
    from business.dashboard import DashboardService
    from business.errors import NotFound

    cycle = CycleManager(db).get_cycle_by_id_or_current(args.cycle_id)
    dashboards = DashboardService(db)
    if args.influencer is None:
        return dashboards.master_dashboard(cycle)

    influencer = db.influencers.find_by_id(args.influencer)
    if influencer is None:
        raise NotFound("Influenciadora nao encontrada.")
    return dashboards.influencer_dashboard(cycle, influencer)


def cmd_snapshot(db, args):
    from business.cycles import CycleManager
    from business.dashboard import DashboardService

    cycle = CycleManager(db).get_cycle_by_id_or_current(args.cycle_id)
    dashboards = DashboardService(db)
    return [
        dashboards.snapshot_monthly_commission(cycle, influencer)
        for influencer in db.influencers.list_by_name()
    ]


def build_parser():
    parser = argparse.ArgumentParser(description="Influencer program operations")
    parser.add_argument("--db", default=None,
                        help="Database URL (default: DATABASE_URL)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and seed data")

    p = sub.add_parser("cycle", help="Ensure and show the current cycle")
    p.add_argument("--cycle-id", type=int, default=None)

    p = sub.add_parser("import-sales", help="Analyse or import a sales file")
    p.add_argument("file", help="CSV export or pasted text file")
    p.add_argument("--confirm", action="store_true",
                   help="Insert the valid rows instead of only analysing")

    p = sub.add_parser("dashboard", help="Show a dashboard")
    p.add_argument("--influencer", type=int, default=None,
                   help="Influencer id (omit for the master view)")
    p.add_argument("--cycle-id", type=int, default=None)

    p = sub.add_parser("snapshot", help="Store the monthly commission of every influencer")
    p.add_argument("--cycle-id", type=int, default=None)

    return parser


COMMANDS = {
    "init-db": cmd_init_db,
    "cycle": cmd_cycle,
    "import-sales": cmd_import_sales,
    "dashboard": cmd_dashboard,
    "snapshot": cmd_snapshot,
}


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging()

    from database import DatabaseManager
    from business.errors import OperationError

    db = DatabaseManager(args.db)
    try:
        db.create_tables()
        logger.info(f"Database connected: {db.database_url}")
        _print(COMMANDS[args.command](db, args))
        return 0
    except OperationError as e:
        logger.error(f"{args.command} failed ({e.status}): {e.message}")
        _print(e.to_dict())
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
