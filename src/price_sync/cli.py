"""Command-line interface for price resolution and sync jobs."""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation
from uuid import UUID

import pydantic

from price_sync.config import get_settings
from price_sync.errors import PriceSyncError
from price_sync.pricing.models import DiscountRule
from price_sync.pricing.resolver import calculate_candidate, resolve_price, round_price

logger = logging.getLogger(__name__)


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


def _datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO 8601 datetime: {value!r}")


def price_command(args: argparse.Namespace) -> None:
    """Resolve a sale price offline from a base price and discount rules."""
    rules = []
    for raw in args.rule or []:
        kind, _, value = raw.partition("=")
        if kind not in ("percent", "amount", "fixed"):
            raise PriceSyncError(f"Unknown rule kind '{kind}', use percent, amount or fixed")
        field = "fixed_price" if kind == "fixed" else kind
        try:
            rules.append(DiscountRule(**{field: _decimal(value)}))
        except (argparse.ArgumentTypeError, pydantic.ValidationError) as e:
            raise PriceSyncError(f"Invalid rule '{raw}': {e}")

    quantum = args.quantum if args.quantum is not None else get_settings().price_quantum

    print(f"Base price: {args.base}")
    print(f"{'=' * 40}")
    for rule in rules:
        label = rule.kind.value if rule.kind else "none"
        print(f"  {label:12}: {calculate_candidate(args.base, rule)}")

    resolved = resolve_price(args.base, rules)
    print(f"{'=' * 40}")
    print(f"Resolved:   {resolved}")
    print(f"Rounded:    {min(args.base, round_price(resolved, quantum))} (quantum {quantum})")


async def init_db_command() -> None:
    from price_sync.db.base import Base, engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Database initialized!")


async def sync_product_command(args: argparse.Namespace) -> None:
    from price_sync.db.base import session_scope
    from price_sync.services.price_sync import sync_product_price

    async with session_scope() as session:
        result = await sync_product_price(session, args.product_id, at=args.at)

    if not result.found:
        print(f"Product {args.product_id} not found, nothing to sync")
        return

    print(f"Product:   {result.product_id}")
    print(f"Price:     {result.price}")
    print(f"Sale:      {result.sale_price}")
    print(f"Campaigns: {len(result.campaign_ids)}")
    print(f"Changed:   {'yes' if result.changed else 'no'}")


async def tick_command(args: argparse.Namespace) -> None:
    from price_sync.services.scheduler import run_scheduled_sync

    outcome = await run_scheduled_sync(args.now)

    print(f"Window:    {outcome.window_start.isoformat()} .. {outcome.window_end.isoformat()}")
    print(f"Campaigns: {len(outcome.campaign_ids)}")
    print(f"Products:  {len(outcome.results)}")
    changed = [r for r in outcome.results if r.changed]
    for result in changed:
        print(f"  {result.product_id}: sale price {result.sale_price}")


async def scheduler_command(args: argparse.Namespace) -> None:
    from price_sync.services.scheduler import ScheduleTrigger

    trigger = ScheduleTrigger(
        interval_seconds=args.interval,
        lookback_seconds=args.lookback,
    )
    await trigger.run_forever()


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="price-sync",
        description="Campaign sale price synchronization",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Price command
    price_parser = subparsers.add_parser(
        "price",
        help="Resolve a sale price without touching the database",
    )
    price_parser.add_argument("--base", type=_decimal, required=True, help="Base price")
    price_parser.add_argument(
        "--rule",
        action="append",
        metavar="KIND=VALUE",
        help="Discount rule, e.g. percent=10, amount=5 or fixed=80 (repeatable)",
    )
    price_parser.add_argument(
        "--quantum",
        type=_decimal,
        help="Rounding granularity (default: settings.price_quantum)",
    )

    subparsers.add_parser("init-db", help="Create all tables")

    # Sync command
    sync_parser = subparsers.add_parser(
        "sync-product",
        help="Recompute the sale prices of one product",
    )
    sync_parser.add_argument("product_id", type=UUID, help="Product id")
    sync_parser.add_argument(
        "--at",
        type=_datetime,
        help="Evaluate campaigns at this instant (default: now)",
    )

    # Tick command
    tick_parser = subparsers.add_parser("tick", help="Run one scheduled sync tick")
    tick_parser.add_argument(
        "--now",
        type=_datetime,
        help="End of the scan window (default: now)",
    )

    # Scheduler command
    scheduler_parser = subparsers.add_parser("scheduler", help="Run the scheduler loop")
    scheduler_parser.add_argument(
        "--interval",
        type=int,
        help="Seconds between ticks (default: settings.scheduler_interval_seconds)",
    )
    scheduler_parser.add_argument(
        "--lookback",
        type=int,
        help="Scan window in seconds (default: settings.scheduler_lookback_seconds)",
    )

    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command == "price":
            price_command(args)
        elif args.command == "init-db":
            asyncio.run(init_db_command())
        elif args.command == "sync-product":
            asyncio.run(sync_product_command(args))
        elif args.command == "tick":
            asyncio.run(tick_command(args))
        elif args.command == "scheduler":
            asyncio.run(scheduler_command(args))
        else:
            parser.print_help()
            return 1
    except PriceSyncError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")

    return 0


if __name__ == "__main__":
    sys.exit(main())
