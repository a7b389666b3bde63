"""Client for the plaid-link endpoint that fronts the Plaid aggregator."""

import logging
from typing import Any

import requests

from coinedge.bank_link import BankAggregator, ExchangedAccount, LinkToken, TokenExchange
from coinedge.errors import ExternalServiceError, NotAuthenticated, NotConfigured


class PlaidLinkClient(BankAggregator):
    """Calls the authenticated plaid-link endpoint with an action payload."""

    def __init__(
        self,
        url: str,
        timeout: float = 10,
        logger: logging.Logger | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._logger = logger
        self.session = requests.Session()

    def _log(self, level: int, msg: str) -> None:
        """Log a message if logger is configured."""
        if self._logger:
            self._logger.log(level, msg)

    def _post(self, user_token: str, body: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        self._log(logging.DEBUG, f"Request: POST plaid-link action={body.get('action')}")
        try:
            response = self.session.post(
                self.url,
                json=body,
                headers={"Authorization": f"Bearer {user_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalServiceError("Plaid", 0, f"Network error: {e}") from e

        try:
            data = response.json() if response.text else {}
        except ValueError:
            data = {}

        if response.status_code == 401:
            raise NotAuthenticated(data.get("error") or "Invalid token")

        return response.status_code, data

    def create_link_token(self, user_token: str) -> LinkToken:
        status, data = self._post(user_token, {"action": "create_link_token"})

        if data.get("mock"):
            return LinkToken(link_token=None, mock=True)

        if data.get("link_token"):
            return LinkToken(
                link_token=data["link_token"], expiration=data.get("expiration")
            )

        raise ExternalServiceError(
            "Plaid", status, data.get("error") or "Failed to initialize bank linking"
        )

    def exchange_public_token(self, public_token: str, user_token: str) -> TokenExchange:
        status, data = self._post(
            user_token,
            {"action": "exchange_public_token", "public_token": public_token},
        )

        if data.get("mock"):
            raise NotConfigured(data.get("message") or "Bank linking is not configured")

        if status >= 500:
            raise ExternalServiceError("Plaid", status, data.get("error"))

        accounts = tuple(_parse_account(a) for a in data.get("accounts") or [])
        return TokenExchange(
            success=bool(data.get("success")),
            accounts=accounts,
            error=data.get("error"),
        )


def _parse_account(raw: dict[str, Any]) -> ExchangedAccount:
    return ExchangedAccount(
        bank_name=raw.get("bank_name") or raw.get("name") or "Bank Account",
        mask=raw.get("account_mask") or raw.get("mask") or "****",
        account_id=raw.get("plaid_account_id") or raw.get("account_id"),
    )
