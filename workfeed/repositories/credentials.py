"""Credential store for OAuth token bundles and per-provider account registries.

Keys:
- ``tokens-<provider>``            single-account providers
- ``tokens-<provider>-<account>``  multi-account providers
- ``accounts-<provider>``          JSON list of known account ids

All access goes through one re-entrant lock, so adapters running
concurrently can read their credentials safely.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from workfeed.errors import StorageError
from workfeed.models import Provider, TokenBundle

logger = logging.getLogger(__name__)


class SecretBackend(Protocol):
    """Secure key/value storage used as the credential store's backing."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


class KeyringSecretBackend:
    """System keychain (macOS Keychain, Secret Service, Windows Credential Locker)."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name

    def get(self, key: str) -> bytes | None:
        try:
            value = keyring.get_password(self.service_name, key)
        except KeyringError as e:
            raise StorageError(f"Keyring read failed for '{key}': {e}") from e
        return value.encode("utf-8") if value is not None else None

    def set(self, key: str, value: bytes) -> None:
        try:
            keyring.set_password(self.service_name, key, value.decode("utf-8"))
        except KeyringError as e:
            raise StorageError(f"Keyring write failed for '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            # Nothing stored under this key
            return
        except KeyringError as e:
            raise StorageError(f"Keyring delete failed for '{key}': {e}") from e


class MemorySecretBackend:
    """Process-local backend for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


def token_key(provider: Provider, account: str | None = None) -> str:
    if account:
        return f"tokens-{provider.value}-{account.lower()}"
    return f"tokens-{provider.value}"


def accounts_key(provider: Provider) -> str:
    return f"accounts-{provider.value}"


class CredentialStore:
    """Token bundles keyed by provider or (provider, account)."""

    def __init__(self, backend: SecretBackend) -> None:
        self.backend = backend
        self._lock = threading.RLock()

    # ==================== Raw key operations ====================

    def put(self, key: str, bundle: TokenBundle) -> None:
        with self._lock:
            self.backend.set(key, bundle.to_json().encode("utf-8"))

    def get(self, key: str) -> TokenBundle | None:
        with self._lock:
            raw = self.backend.get(key)
        if raw is None:
            return None
        try:
            return TokenBundle.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Corrupt token bundle under '{key}': {e}") from e

    def delete(self, key: str) -> None:
        with self._lock:
            self.backend.delete(key)

    def has(self, key: str) -> bool:
        """Best-effort probe: any read failure counts as absent."""
        try:
            return self.get(key) is not None
        except StorageError as e:
            logger.debug(f"Credential probe for '{key}' failed: {e}")
            return False

    # ==================== Provider-level helpers ====================

    def get_tokens(self, provider: Provider, account: str | None = None) -> TokenBundle | None:
        return self.get(token_key(provider, account))

    def save_tokens(
        self, provider: Provider, bundle: TokenBundle, account: str | None = None
    ) -> None:
        self.put(token_key(provider, account), bundle)

    def delete_tokens(self, provider: Provider, account: str | None = None) -> None:
        self.delete(token_key(provider, account))

    def has_credentials(self, provider: Provider) -> bool:
        """True when any bundle exists for the provider, in either key scheme."""
        if provider.supports_multiple_accounts:
            try:
                accounts = self.list_accounts(provider)
            except StorageError:
                accounts = []
            if any(self.has(token_key(provider, a)) for a in accounts):
                return True
        return self.has(token_key(provider))

    # ==================== Account registry ====================

    def list_accounts(self, provider: Provider) -> list[str]:
        with self._lock:
            raw = self.backend.get(accounts_key(provider))
        if raw is None:
            return []
        try:
            accounts = json.loads(raw)
        except ValueError as e:
            raise StorageError(f"Corrupt account registry for {provider.value}: {e}") from e
        return [str(a) for a in accounts]

    def add_account(self, provider: Provider, account: str) -> None:
        account = account.lower()
        with self._lock:
            accounts = self.list_accounts(provider)
            if account in accounts:
                return
            accounts.append(account)
            self._write_accounts(provider, accounts)

    def remove_account(self, provider: Provider, account: str) -> None:
        account = account.lower()
        with self._lock:
            accounts = [a for a in self.list_accounts(provider) if a != account]
            self._write_accounts(provider, accounts)

    def clear_accounts(self, provider: Provider) -> None:
        with self._lock:
            self.backend.delete(accounts_key(provider))

    def _write_accounts(self, provider: Provider, accounts: list[str]) -> None:
        if accounts:
            self.backend.set(accounts_key(provider), json.dumps(accounts).encode("utf-8"))
        else:
            self.backend.delete(accounts_key(provider))
