"""
P2P Ramp Client - command line entry point.

Read-only inspection of the marketplace from a terminal.

Usage:
    p2p-ramp rate USD ETH
    p2p-ramp rate USD USDT --chain 11155111
    p2p-ramp orders --state Created
    p2p-ramp orders --offramper-id 7 --chain-id 84532 --page 1 --page-size 20

Configuration:
    Settings are read from RAMP_* environment variables or a .env file
    (see p2p_ramp.config.RampSettings). The most relevant ones:

    RAMP_ORDER_SERVICE_URL   Order service root URL
    RAMP_DATABASE_URL        PostgreSQL client storage (rate cache)
    RAMP_LOG_LEVEL           Logging level (DEBUG/INFO/WARNING/ERROR)
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from p2p_ramp.config import RampSettings
from p2p_ramp.errors import RampClientError
from p2p_ramp.execution.filters import apply_filters, service_filter
from p2p_ramp.execution.rates import ExchangeRateCache
from p2p_ramp.service.client import OrderServiceClient
from p2p_ramp.service.models import (
    ByChainId,
    ByOfframperId,
    ByOnramperId,
    ByState,
    OrderFilter,
    OrderState,
    OrderStateFilter,
)
from p2p_ramp.storage.client_store import ClientStore
from p2p_ramp.storage.database import Database

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="p2p-ramp",
        description="P2P Ramp Client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    rate = sub.add_parser("rate", help="Show a cached or fresh exchange rate")
    rate.add_argument("currency", help="Fiat currency, e.g. USD")
    rate.add_argument("symbol", help="Token rate symbol, e.g. ETH")
    rate.add_argument("--chain", dest="chain_qualifier", help="Chain qualifier for chain-specific tokens")

    orders = sub.add_parser("orders", help="List orders")
    orders.add_argument("--state", choices=[s.value for s in OrderStateFilter])
    orders.add_argument("--offramper-id", type=int)
    orders.add_argument("--onramper-id", type=int)
    orders.add_argument("--chain-id", type=int, help="EVM chain id (filtered client-side)")
    orders.add_argument("--page", type=int)
    orders.add_argument("--page-size", type=int)

    return parser.parse_args(argv)


def build_filters(args: argparse.Namespace) -> List[OrderFilter]:
    filters: List[OrderFilter] = []
    if args.state:
        filters.append(ByState(state=OrderStateFilter(args.state)))
    if args.offramper_id is not None:
        filters.append(ByOfframperId(user_id=args.offramper_id))
    if args.onramper_id is not None:
        filters.append(ByOnramperId(user_id=args.onramper_id))
    if args.chain_id is not None:
        filters.append(ByChainId(chain_id=args.chain_id))
    return filters


def describe_order(order: OrderState) -> str:
    chain = order.blockchain
    chain_text = chain.kind if chain is not None else "-"
    if chain is not None and hasattr(chain, "chain_id"):
        chain_text = f"EVM:{chain.chain_id}"
    return f"{order.order_id:>8}  {order.state:<10} {chain_text}"


async def run_rate(args: argparse.Namespace, settings: RampSettings, service: OrderServiceClient) -> int:
    db = Database(settings.database_config)
    await db.initialize()
    try:
        store = ClientStore(db)
        await store.ensure_schema()
        cache = ExchangeRateCache(service, store, settings.rate_cache_config)
        rate = await cache.get_rate(args.currency.upper(), args.symbol, args.chain_qualifier)
    finally:
        await db.close()

    if rate is None:
        print(f"No {args.symbol}/{args.currency.upper()} rate available", file=sys.stderr)
        return 1
    print(f"1 {args.symbol} = {rate} {args.currency.upper()}")
    return 0


async def run_orders(args: argparse.Namespace, service: OrderServiceClient) -> int:
    filters = build_filters(args)
    # The first service-supported filter is sent; all are applied locally
    primary = next((f for f in filters if service_filter(f) is not None), None)
    orders = await service.get_orders(primary, args.page, args.page_size)
    orders = apply_filters(orders, filters)

    for order in orders:
        print(describe_order(order))
    logger.info(f"{len(orders)} orders")
    return 0


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    settings = RampSettings()

    async with OrderServiceClient(
        settings.order_service_url,
        timeout=settings.request_timeout,
        read_retries=settings.read_retries,
    ) as service:
        try:
            if args.command == "rate":
                return await run_rate(args, settings, service)
            return await run_orders(args, service)
        except RampClientError as e:
            logger.error(str(e))
            return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings_level = RampSettings().log_level.upper()
    logging.basicConfig(
        level=getattr(logging, args.log_level or settings_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
