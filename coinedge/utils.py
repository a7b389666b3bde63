import argparse
import logging
from decimal import ROUND_HALF_UP, Decimal

from coinedge.domain.models import Money


def create_logger(name: str, level: str) -> logging.Logger:
    """Create and configure a logger instance."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))

    handler = logging.StreamHandler()
    handler.setLevel(getattr(logging, level))
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.handlers = [handler]

    return logger


def log_config(logger: logging.Logger, args: argparse.Namespace) -> None:
    """Log configuration (safe subset only, never tokens)."""
    logger.debug("=" * 60)
    logger.debug(f"CoinEdge settlement core: {args.command}")
    logger.debug("=" * 60)
    logger.debug(f"Log level: {args.log_level}")
    logger.debug(f"Database configured: {bool(args.database_url)}")
    logger.debug(f"Square environment: {args.square_environment}")
    logger.debug(f"Price cache TTL: {args.price_cache_ttl}s")
    logger.debug("=" * 60)


def format_usd(value: Money | Decimal) -> str:
    """
    Format an amount as US dollars.

    Examples:
        Decimal("1234.5") -> $1,234.50
        Decimal("-3") -> -$3.00
    """
    amount = value.amount if isinstance(value, Money) else value
    rounded = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    return f"{sign}${abs(rounded):,.2f}"


def format_percent(rate: Decimal) -> str:
    """Format a fractional rate as a percentage (0.0875 -> 8.75%)."""
    return f"{(rate * 100).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}%"
