"""Credential and settings repositories."""

from .credentials import (
    CredentialStore,
    KeyringSecretBackend,
    MemorySecretBackend,
    SecretBackend,
)
from .settings import (
    JsonFileSettingsBackend,
    MemorySettingsBackend,
    SettingsBackend,
    SettingsStore,
)

__all__ = [
    "CredentialStore",
    "JsonFileSettingsBackend",
    "KeyringSecretBackend",
    "MemorySecretBackend",
    "MemorySettingsBackend",
    "SecretBackend",
    "SettingsBackend",
    "SettingsStore",
]
