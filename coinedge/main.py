"""CoinEdge settlement core - Entry point."""

import argparse
import logging
import os
import sys
from datetime import timedelta
from uuid import UUID

from psycopg import Connection
from psycopg.rows import TupleRow
from psycopg_pool import ConnectionPool

from coinedge.bank_link import BankLinkFlow
from coinedge.cli import DB_COMMANDS, parse_args, validate_args
from coinedge.credentials import CredentialChain, EnvCredentialProvider
from coinedge.domain.models import Money, PaymentStatus
from coinedge.errors import CoinEdgeError, NotConfigured
from coinedge.fees import calculate_fees
from coinedge.infrastructure.repositories import (
    PostgresBankAccountRepository,
    PostgresCheckoutRepository,
    PostgresReconciliationRepository,
)
from coinedge.payment_flow import PaymentFlow
from coinedge.plaid_client import PlaidLinkClient
from coinedge.price_oracle import PriceOracle
from coinedge.quotes import QuoteService
from coinedge.reconciliation import ReconciliationEngine
from coinedge.square_client import SquareTerminalClient
from coinedge.utils import create_logger, format_percent, format_usd, log_config


def run_fees(args: argparse.Namespace, logger: logging.Logger) -> int:
    breakdown = calculate_fees(Money.of(args.amount, "USD"), args.method)
    pos, redemption = breakdown.pos, breakdown.redemption

    logger.info(f"Base amount: {format_usd(pos.base_amount)} ({pos.method.value})")
    logger.info(
        f"  Merchant fee ({format_percent(pos.merchant_fee_rate)}, merchant margin): "
        f"{format_usd(pos.merchant_fee)}"
    )
    for part in pos.splits:
        logger.info(f"  {part.party} ({format_percent(part.rate)}): {format_usd(part.amount)}")
    logger.info(f"  Customer pays: {format_usd(pos.customer_pays)}")
    logger.info("At redemption:")
    for part in redemption.splits:
        logger.info(f"  {part.party} ({format_percent(part.rate)}): {format_usd(part.amount)}")
    logger.info(f"  Total redemption fee: {format_usd(redemption.total_redemption_fee)}")
    logger.info(f"  Net BTC value: {format_usd(redemption.net_value)}")
    logger.debug(f"Combined fee (informational): {format_usd(breakdown.total_fee)}")
    return 0


def run_price(args: argparse.Namespace, logger: logging.Logger) -> int:
    oracle = PriceOracle.for_price_endpoint(
        ttl=timedelta(seconds=args.price_cache_ttl), logger=logger
    )
    price = oracle.get_price()
    logger.info(f"BTC/USD {format_usd(price.value)} from {price.source}")
    return 0


def run_quote(args: argparse.Namespace, logger: logging.Logger) -> int:
    service = QuoteService(PriceOracle.for_quotes(logger=logger), logger=logger)
    quote = service.create_quote(args.transfer_type, args.amount, args.asset)
    logger.info(f"Quote {quote.id} ({quote.type.value})")
    logger.info(f"  In:   {quote.input}")
    logger.info(f"  Fee:  {quote.fee}")
    logger.info(f"  Out:  {quote.output}")
    logger.info(f"  Rate: {quote.rate.value} ({quote.rate.source})")
    logger.info(f"  Expires: {quote.expires_at.isoformat()}")
    return 0


def run_checkout(
    args: argparse.Namespace, logger: logging.Logger, pool: ConnectionPool | None
) -> int:
    gateway = SquareTerminalClient(
        access_token=os.environ.get("SQUARE_ACCESS_TOKEN"),
        device_id=args.device_id,
        environment=args.square_environment,
        logger=logger,
    )
    flow = PaymentFlow(
        gateway,
        on_success=lambda ref: logger.info(f"SUCCESS: settlement reference {ref}"),
        on_error=lambda msg: logger.error(f"FAILED: {msg}"),
        poll_interval=args.poll_interval,
        max_poll_attempts=args.max_poll_attempts,
        repository=PostgresCheckoutRepository(pool) if pool else None,
        logger=logger,
    )

    try:
        flow.create_payment(Money.of(args.amount, "USD"), args.activation_event_id)
    except KeyboardInterrupt:
        flow.cancel_payment()
        logger.warning("Checkout canceled")

    return 0 if flow.status == PaymentStatus.COMPLETED else 1


def run_reconcile(args: argparse.Namespace, logger: logging.Logger, pool: ConnectionPool) -> int:
    engine = ReconciliationEngine(PostgresReconciliationRepository(pool), logger=logger)
    record = engine.record_reconciliation(
        args.asset, args.onchain, args.database, notes=args.notes, created_by=args.admin_id
    )
    logger.info(f"Reconciliation recorded: {record.id} (status: {record.status.value})")
    return 1 if record.is_alert else 0


def run_resolve(args: argparse.Namespace, logger: logging.Logger, pool: ConnectionPool) -> int:
    engine = ReconciliationEngine(PostgresReconciliationRepository(pool), logger=logger)
    try:
        record_id = UUID(args.record_id)
    except ValueError:
        logger.error(f"Invalid record ID: {args.record_id}")
        return 1
    engine.resolve_discrepancy(record_id, notes=args.notes, resolved_by=args.admin_id)
    return 0


def run_reconciliation_status(
    args: argparse.Namespace, logger: logging.Logger, pool: ConnectionPool
) -> int:
    engine = ReconciliationEngine(PostgresReconciliationRepository(pool), logger=logger)
    latest = engine.latest_by_asset()
    if not latest:
        logger.info("No reconciliation records yet")
    for asset_type, record in sorted(latest.items(), key=lambda kv: kv[0].value):
        logger.info(
            f"{asset_type.value:<13} {record.status.value:<12} "
            f"on-chain={record.onchain_balance} ledger={record.database_balance} "
            f"({record.discrepancy_pct:.4f}%) at {record.created_at.isoformat()}"
        )
    return 0


def run_link_token(
    args: argparse.Namespace, logger: logging.Logger, pool: ConnectionPool | None
) -> int:
    credentials = CredentialChain(
        [
            EnvCredentialProvider("COINEDGE_ACCESS_TOKEN"),
            EnvCredentialProvider("COINEDGE_WALLET_TOKEN"),
        ],
        logger=logger,
    )
    flow = BankLinkFlow(
        PlaidLinkClient(args.plaid_link_url, logger=logger),
        credentials,
        PostgresBankAccountRepository(pool) if pool else None,
        logger=logger,
    )
    link_token = flow.create_link_token()
    print(link_token)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger = create_logger("coinedge", args.log_level)

    try:
        validate_args(args)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    log_config(logger, args)

    pool: ConnectionPool[Connection[TupleRow]] | None = None
    if args.database_url and args.command in DB_COMMANDS | {"checkout", "link-token"}:
        pool = ConnectionPool(args.database_url)

    try:
        if args.command == "fees":
            return run_fees(args, logger)
        if args.command == "price":
            return run_price(args, logger)
        if args.command == "quote":
            return run_quote(args, logger)
        if args.command == "checkout":
            return run_checkout(args, logger, pool)
        if args.command == "link-token":
            return run_link_token(args, logger, pool)
        if pool is None:
            raise ValueError(f"DATABASE_URL is required for '{args.command}'")
        if args.command == "reconcile":
            return run_reconcile(args, logger, pool)
        if args.command == "resolve":
            return run_resolve(args, logger, pool)
        return run_reconciliation_status(args, logger, pool)

    except NotConfigured as e:
        logger.error(f"NOT CONFIGURED: {e.message}")
        return 2
    except CoinEdgeError as e:
        logger.error(f"{e.kind}: {e.message}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        if pool is not None:
            pool.close()


if __name__ == "__main__":
    sys.exit(main())
