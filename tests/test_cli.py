import logging
from decimal import Decimal

import pytest

from coinedge.cli import parse_args, validate_args
from coinedge.domain.models import Money
from coinedge.main import main
from coinedge.utils import format_percent, format_usd


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in (
        "DATABASE_URL",
        "LOG_LEVEL",
        "PRICE_CACHE_TTL",
        "SQUARE_ACCESS_TOKEN",
        "SQUARE_DEVICE_ID",
        "SQUARE_ENVIRONMENT",
        "PLAID_LINK_URL",
    ):
        monkeypatch.delenv(var, raising=False)


def test_parse_quote_args():
    args = parse_args(["quote", "--type", "SELL_BTC", "--amount", "0.5", "--asset", "BTC"])

    assert args.command == "quote"
    assert args.transfer_type == "SELL_BTC"
    assert args.amount == Decimal("0.5")
    assert args.log_level == "INFO"
    assert args.price_cache_ttl == 30


def test_env_defaults(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/coinedge")
    monkeypatch.setenv("SQUARE_DEVICE_ID", "device-7")

    args = parse_args(["checkout", "--amount", "20"])

    assert args.database_url == "postgresql://localhost/coinedge"
    assert args.device_id == "device-7"
    assert args.poll_interval == 2.0
    assert args.max_poll_attempts == 150


@pytest.mark.parametrize(
    "argv",
    [
        ["fees", "--amount", "0"],
        ["--price-cache-ttl", "0", "price"],
        ["reconcile", "--asset", "BTC", "--onchain", "1", "--database", "1"],
        ["reconciliation-status"],
        ["checkout", "--amount", "10", "--poll-interval", "0"],
        ["link-token"],
    ],
)
def test_invalid_configuration(argv):
    with pytest.raises(ValueError):
        validate_args(parse_args(argv))


def test_main_reports_configuration_error():
    assert main(["reconciliation-status"]) == 1


def test_main_fees(caplog):
    with caplog.at_level(logging.INFO, logger="coinedge"):
        assert main(["fees", "--amount", "100", "--method", "CARD"]) == 0

    assert "Customer pays: $103.00" in caplog.text
    assert "Total redemption fee: $8.75" in caplog.text
    assert "Net BTC value: $91.25" in caplog.text


def test_main_checkout_without_credentials_is_not_configured():
    assert main(["checkout", "--amount", "10", "--device-id", "device-1"]) == 2


def test_format_usd():
    assert format_usd(Decimal("1234.5")) == "$1,234.50"
    assert format_usd(Decimal("-3")) == "-$3.00"
    assert format_usd(Money.of("0.005", "USD")) == "$0.01"


def test_format_percent():
    assert format_percent(Decimal("0.0875")) == "8.75%"
    assert format_percent(Decimal("0.02")) == "2.00%"
