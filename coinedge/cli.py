"""Command-line interface parsing and validation."""

import argparse
import os
from decimal import Decimal

from coinedge.domain.models import AssetType, TransferType
from coinedge.fees import PaymentMethod

DB_COMMANDS = {"reconcile", "resolve", "reconciliation-status"}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="coinedge",
        description="CoinEdge fee, quote and settlement operator tool",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="PostgreSQL connection string",
    )

    parser.add_argument(
        "--price-cache-ttl",
        type=int,
        default=int(os.environ.get("PRICE_CACHE_TTL", "30")),
        help="Seconds a fetched BTC price is served from cache",
    )

    parser.add_argument(
        "--square-environment",
        default=os.environ.get("SQUARE_ENVIRONMENT", "sandbox"),
        choices=["sandbox", "production"],
        help="Square API environment",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    fees = sub.add_parser("fees", help="Show POS and redemption fee breakdown")
    fees.add_argument("--amount", type=Decimal, required=True, help="Base amount in USD")
    fees.add_argument(
        "--method",
        default=PaymentMethod.CARD.value,
        choices=[m.value for m in PaymentMethod],
        help="POS payment method",
    )

    sub.add_parser("price", help="Fetch the current BTC/USD price")

    quote = sub.add_parser("quote", help="Create a transfer quote")
    quote.add_argument(
        "--type",
        dest="transfer_type",
        required=True,
        choices=[t.value for t in TransferType],
        help="Transfer type",
    )
    quote.add_argument("--amount", type=Decimal, required=True, help="Amount to quote")
    quote.add_argument(
        "--asset",
        default=None,
        choices=["BTC", "USDC"],
        help="Denomination of --amount for BUY_BTC/SELL_BTC",
    )

    checkout = sub.add_parser("checkout", help="Run a terminal card checkout")
    checkout.add_argument("--amount", type=Decimal, required=True, help="Base amount in USD")
    checkout.add_argument("--activation-event-id", default=None, help="Reference ID")
    checkout.add_argument(
        "--device-id",
        default=os.environ.get("SQUARE_DEVICE_ID"),
        help="Square Terminal device ID",
    )
    checkout.add_argument(
        "--poll-interval",
        type=float,
        default=2.0,
        help="Seconds between checkout status checks",
    )
    checkout.add_argument(
        "--max-poll-attempts",
        type=int,
        default=150,
        help="Status checks before the checkout times out",
    )

    reconcile = sub.add_parser("reconcile", help="Record a treasury reconciliation")
    reconcile.add_argument(
        "--asset", required=True, choices=[a.value for a in AssetType], help="Asset type"
    )
    reconcile.add_argument("--onchain", type=Decimal, required=True, help="On-chain balance")
    reconcile.add_argument("--database", type=Decimal, required=True, help="Ledger balance")
    reconcile.add_argument("--notes", default=None, help="Free-form notes")
    reconcile.add_argument(
        "--admin-id", default=os.environ.get("COINEDGE_ADMIN_ID"), help="Recording admin"
    )

    resolve = sub.add_parser("resolve", help="Resolve a reconciliation discrepancy")
    resolve.add_argument("--id", dest="record_id", required=True, help="Record UUID")
    resolve.add_argument("--notes", default=None, help="Resolution notes")
    resolve.add_argument(
        "--admin-id", default=os.environ.get("COINEDGE_ADMIN_ID"), help="Resolving admin"
    )

    sub.add_parser("reconciliation-status", help="Latest reconciliation per asset")

    link = sub.add_parser("link-token", help="Request a bank-link token")
    link.add_argument(
        "--plaid-link-url",
        default=os.environ.get("PLAID_LINK_URL"),
        help="URL of the plaid-link endpoint",
    )

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    """Validate command line arguments. Raises ValueError on invalid input."""
    amount = getattr(args, "amount", None)
    if amount is not None and amount <= 0:
        raise ValueError(f"--amount must be positive, got {amount}")

    if args.price_cache_ttl <= 0:
        raise ValueError(f"--price-cache-ttl must be positive, got {args.price_cache_ttl}")

    if args.command in DB_COMMANDS and not args.database_url:
        raise ValueError(f"DATABASE_URL is required for '{args.command}'")

    if args.command == "checkout":
        if args.poll_interval <= 0:
            raise ValueError(f"--poll-interval must be positive, got {args.poll_interval}")
        if args.max_poll_attempts <= 0:
            raise ValueError(
                f"--max-poll-attempts must be positive, got {args.max_poll_attempts}"
            )

    if args.command == "link-token" and not args.plaid_link_url:
        raise ValueError("PLAID_LINK_URL is required for 'link-token'")
