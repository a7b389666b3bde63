"""Bank account linking through an external aggregator."""

import hashlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from coinedge.credentials import CredentialChain
from coinedge.domain.models import BankAccountLink
from coinedge.errors import ExternalServiceError, NotConfigured
from coinedge.infrastructure.repositories import BankAccountRepository


@dataclass(frozen=True)
class LinkToken:
    link_token: str | None
    mock: bool = False
    expiration: str | None = None


@dataclass(frozen=True)
class ExchangedAccount:
    bank_name: str
    mask: str
    account_id: str | None = None


@dataclass(frozen=True)
class TokenExchange:
    success: bool
    accounts: tuple[ExchangedAccount, ...] = field(default_factory=tuple)
    error: str | None = None


class BankAggregator(ABC):
    """Bank-link aggregator contract."""

    @abstractmethod
    def create_link_token(self, user_token: str) -> LinkToken:
        ...

    @abstractmethod
    def exchange_public_token(self, public_token: str, user_token: str) -> TokenExchange:
        ...


def account_fingerprint(account: ExchangedAccount) -> str:
    """Stable identity of an aggregator account, used to dedupe re-links."""
    key = "|".join([account.account_id or "", account.bank_name, account.mask])
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class BankLinkFlow:
    def __init__(
        self,
        aggregator: BankAggregator,
        credentials: CredentialChain,
        accounts: BankAccountRepository | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._aggregator = aggregator
        self._credentials = credentials
        self._accounts = accounts
        self._clock = clock or (lambda: datetime.now(UTC))
        self._logger = logger or logging.getLogger("coinedge.bank_link")

    def create_link_token(self) -> str:
        """
        Request a short-lived link token for the account-selection UI.

        Raises NotConfigured when the aggregator integration is disabled,
        NotAuthenticated when no identity provider has a token.
        """
        token = self._credentials.resolve()
        result = self._aggregator.create_link_token(token)

        if result.mock:
            self._logger.warning("Bank linking requested but aggregator is not configured")
            raise NotConfigured(
                "Bank linking is not configured yet. Contact admin to set it up."
            )
        if not result.link_token:
            raise ExternalServiceError("Bank aggregator", 0, "No link token returned")

        return result.link_token

    def exchange_token(self, public_token: str, user_id: str) -> list[BankAccountLink]:
        """
        Exchange a public token and store the selected accounts for user_id.

        Accounts already linked for the user are returned as stored, so
        repeating an exchange never creates duplicates.
        """
        if not public_token:
            raise ValueError("public_token is required")
        if self._accounts is None:
            raise NotConfigured("Bank account store is not configured")

        token = self._credentials.resolve()
        result = self._aggregator.exchange_public_token(public_token, token)

        if not result.success or not result.accounts:
            raise ExternalServiceError(
                "Bank aggregator", 0, result.error or "Failed to link bank account"
            )

        links: list[BankAccountLink] = []
        added = 0
        for account in result.accounts:
            fingerprint = account_fingerprint(account)
            existing = self._accounts.find_by_fingerprint(user_id, fingerprint)
            if existing is not None:
                links.append(existing)
                continue

            link = BankAccountLink(
                account_id=account.account_id or fingerprint[:24],
                user_id=user_id,
                bank_name=account.bank_name,
                account_mask=account.mask,
                fingerprint=fingerprint,
                linked_at=self._clock(),
            )
            links.append(self._accounts.add(link))
            added += 1

        self._logger.info(
            f"Linked {added} new bank account(s) for {user_id} "
            f"({len(links) - added} already linked)"
        )
        return links
