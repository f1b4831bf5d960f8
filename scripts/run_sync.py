# scripts/run_sync.py
import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

# Allows running the file directly from a checkout
sys.path.append(str(Path(__file__).resolve().parent.parent))

from crud import sync_logs
from database import create_engine_from_settings, create_session_factory, init_models
from logging_config import setup_logging
from settings import Settings
from services.couriers import get_courier_service
from services.shopify_service import ShopifyService
from services.sync_service import SyncService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shipsy-sync", description="Run one Shopify ⇄ Shipsy sync job and exit.")
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="create consignments for one page of orders")
    sync.add_argument("--limit", type=int, default=None)
    sync.add_argument("--created-after", type=datetime.fromisoformat, default=None,
                      help="ISO-8601 timestamp; only orders created after it")

    status = commands.add_parser("status", help="mirror consignment statuses onto Shopify orders")
    status.add_argument("--limit", type=int, default=None)

    commands.add_parser("repair", help="write missing order notes for recorded consignments")

    prune = commands.add_parser("prune-logs", help="delete old sync log entries")
    prune.add_argument("--days", type=int, default=None)
    return parser


async def run(args: argparse.Namespace, settings: Settings) -> dict:
    engine = create_engine_from_settings(settings)
    try:
        await init_models(engine)
        async with create_session_factory(engine)() as session:
            if args.command == "prune-logs":
                days = args.days if args.days is not None else settings.LOG_RETENTION_DAYS
                return await sync_logs.clear_old_logs(session, days_old=days)

            service = SyncService(session, ShopifyService(settings), get_courier_service("shipsy", settings), settings)
            if args.command == "sync":
                result = await service.sync_pending_orders(limit=args.limit, created_after=args.created_after)
                return result.model_dump()
            if args.command == "status":
                return (await service.update_consignment_statuses(limit=args.limit)).model_dump()
            return await service.repair_unwritten_notes()
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(settings)
    result = asyncio.run(run(args, settings))
    print(json.dumps(result, indent=2, default=str))
    return 1 if result.get("failed") else 0


if __name__ == "__main__":
    sys.exit(main())
