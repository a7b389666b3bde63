"""Square Terminal Checkout API client."""

import logging
import uuid
from datetime import timedelta
from typing import Any

import requests

from coinedge.errors import ExternalServiceError, NotConfigured
from coinedge.payment_flow import CheckoutCreated, CheckoutStatus, PaymentGateway

SQUARE_VERSION = "2024-01-18"
SQUARE_BASE_URLS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}


def iso_duration(delta: timedelta) -> str:
    """Render a timedelta as an ISO 8601 duration (e.g. PT5M, PT90S)."""
    seconds = int(delta.total_seconds())
    if seconds % 60 == 0:
        return f"PT{seconds // 60}M"
    return f"PT{seconds}S"


class SquareTerminalClient(PaymentGateway):
    """Creates and polls Terminal checkouts for card-present activations."""

    def __init__(
        self,
        access_token: str | None,
        device_id: str | None,
        environment: str = "sandbox",
        timeout: float = 10,
        logger: logging.Logger | None = None,
    ):
        if not access_token or not device_id:
            raise NotConfigured("Payment service not configured")
        if environment not in SQUARE_BASE_URLS:
            raise ValueError(f"Unknown Square environment: {environment}")

        self.device_id = device_id
        self.base_url = SQUARE_BASE_URLS[environment]
        self.timeout = timeout
        self._logger = logger
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Square-Version": SQUARE_VERSION,
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            }
        )

    def _log(self, level: int, msg: str) -> None:
        """Log a message if logger is configured."""
        if self._logger:
            self._logger.log(level, msg)

    def _request(
        self, method: str, endpoint: str, body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make HTTP request to the Square API."""
        url = f"{self.base_url}{endpoint}"
        self._log(logging.DEBUG, f"Request: {method} {endpoint}")

        try:
            response = self.session.request(method, url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalServiceError("Square", 0, f"Network error: {e}") from e

        try:
            data = response.json() if response.text else {}
        except ValueError:
            data = {}

        if not response.ok:
            errors = data.get("errors") or [{}]
            detail = errors[0].get("detail") or response.text or "Unknown error"
            raise ExternalServiceError("Square", response.status_code, detail)

        return data

    def create_checkout(
        self, amount_minor_units: int, reference_id: str, deadline: timedelta
    ) -> CheckoutCreated:
        """
        Create a Terminal checkout on the configured device.

        Args:
            amount_minor_units: Amount the customer pays, in cents
            reference_id: Activation event ID, echoed back by Square
            deadline: How long the terminal waits for the card
        """
        body = {
            "idempotency_key": str(uuid.uuid4()),
            "checkout": {
                "amount_money": {"amount": amount_minor_units, "currency": "USD"},
                "device_options": {
                    "device_id": self.device_id,
                    "tip_settings": {"allow_tipping": False},
                    "skip_receipt_screen": True,
                },
                "reference_id": reference_id,
                "note": f"BitCard Activation - {reference_id}",
                "deadline_duration": iso_duration(deadline),
            },
        }

        data = self._request("POST", "/v2/terminals/checkouts", body)
        checkout_id = (data.get("checkout") or {}).get("id")
        if not checkout_id:
            raise ExternalServiceError("Square", 200, "Checkout response missing id")

        self._log(logging.INFO, f"Square checkout created: {checkout_id}")
        return CheckoutCreated(checkout_id=checkout_id)

    def get_checkout_status(self, checkout_id: str) -> CheckoutStatus:
        """
        Fetch the provider status of a checkout.

        A 4xx answer means Square rejected the lookup itself and is reported
        as FAILED; network errors and 5xx answers raise ExternalServiceError.
        """
        try:
            data = self._request("GET", f"/v2/terminals/checkouts/{checkout_id}")
        except ExternalServiceError as e:
            if 400 <= e.status_code < 500:
                return CheckoutStatus(status="FAILED", error=e.detail)
            raise

        checkout = data.get("checkout") or {}
        return CheckoutStatus(
            status=checkout.get("status", "PENDING"),
            payment_ids=tuple(checkout.get("payment_ids") or ()),
        )
