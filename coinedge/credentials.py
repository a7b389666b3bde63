"""Bearer-token resolution across identity providers.

Two providers coexist while users migrate from session login to wallet login:
the session provider is always asked first.
"""

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from coinedge.errors import NotAuthenticated


class CredentialProvider(ABC):
    name: str

    @abstractmethod
    def try_get_token(self) -> str | None:
        """Return a bearer token, or None if this provider has no signed-in user."""
        ...


class CallableCredentialProvider(CredentialProvider):
    """Adapts an identity SDK's token getter."""

    def __init__(self, name: str, get_token: Callable[[], str | None]):
        self.name = name
        self._get_token = get_token

    def try_get_token(self) -> str | None:
        return self._get_token() or None


class SessionCredentialProvider(CallableCredentialProvider):
    def __init__(self, get_token: Callable[[], str | None]):
        super().__init__("session", get_token)


class WalletCredentialProvider(CallableCredentialProvider):
    def __init__(self, get_token: Callable[[], str | None]):
        super().__init__("wallet", get_token)


class EnvCredentialProvider(CredentialProvider):
    """Reads a token from an environment variable (operator CLI use)."""

    def __init__(self, variable: str):
        self.name = f"env:{variable}"
        self.variable = variable

    def try_get_token(self) -> str | None:
        return os.environ.get(self.variable) or None


class CredentialChain:
    """Asks each provider in priority order; fails closed if none has a token."""

    def __init__(
        self,
        providers: Sequence[CredentialProvider],
        logger: logging.Logger | None = None,
    ):
        self.providers = list(providers)
        self._logger = logger or logging.getLogger("coinedge.credentials")

    def resolve(self) -> str:
        for provider in self.providers:
            token = provider.try_get_token()
            if token:
                self._logger.debug(f"Using credentials from {provider.name} provider")
                return token
        raise NotAuthenticated()
