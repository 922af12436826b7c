"""User settings and selection state.

Enabled/authenticated flags, poll interval, display preferences, the
repository selection, the active account, the pinned-id set and the commit
baseline all live here, persisted through a simple key/value backend.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from workfeed.errors import StorageError
from workfeed.models import Provider, ServiceConfig

if TYPE_CHECKING:
    from .credentials import CredentialStore

logger = logging.getLogger(__name__)

# Persistence keys
SERVICE_CONFIGS_KEY = "service_configs"
POLL_INTERVAL_KEY = "poll_interval_seconds"
OPACITY_KEY = "background_opacity"
LOOKAHEAD_KEY = "calendar_lookahead_hours"
NOTIFICATION_DAYS_KEY = "notification_days"
SELECTED_REPOS_KEY = "github.selected_repo_names.v1"
COMMIT_BASELINE_KEY = "github.default_branch_commit_baseline.v1"
ACTIVE_ACCOUNT_KEY = "github.active_account_login.v1"
PINNED_IDS_KEY = "pinned_notification_ids"

DEFAULT_POLL_INTERVAL = 60
MIN_POLL_INTERVAL = 10
DEFAULT_LOOKAHEAD_HOURS = 24
DEFAULT_NOTIFICATION_DAYS = 7


class SettingsBackend(Protocol):
    """Durable key/value map. Values are JSON-compatible."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemorySettingsBackend:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileSettingsBackend:
    """Single JSON document on disk, rewritten atomically on every change."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._data = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read settings file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Settings file {self.path} is not a JSON object")
        return data

    def _flush(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write settings file {self.path}: {e}") from e

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SettingsStore:
    """Settings and selection state shared by the engine and the adapters.

    Getters return copies; adapters running in parallel never mutate the
    store except through their own baseline slot.
    """

    def __init__(self, backend: SettingsBackend) -> None:
        self.backend = backend
        self._lock = threading.RLock()

        self.service_configs: dict[Provider, ServiceConfig] = {}
        self.poll_interval_seconds = DEFAULT_POLL_INTERVAL
        self.background_opacity = 1.0
        self.calendar_lookahead_hours = DEFAULT_LOOKAHEAD_HOURS
        self.notification_days = DEFAULT_NOTIFICATION_DAYS
        self._selected_repositories: set[str] = set()
        self._active_account: str | None = None
        self._pinned_ids: list[str] = []
        self._commit_baseline: dict[str, str] = {}

        self._load()

    def _load(self) -> None:
        raw_configs = self.backend.get(SERVICE_CONFIGS_KEY) or {}
        for provider in Provider:
            entry = raw_configs.get(provider.value) or {}
            self.service_configs[provider] = ServiceConfig(
                enabled=bool(entry.get("enabled", False)),
                authenticated=bool(entry.get("authenticated", False)),
            )

        saved_poll = self.backend.get(POLL_INTERVAL_KEY)
        if saved_poll and saved_poll > 0:
            self.poll_interval_seconds = max(MIN_POLL_INTERVAL, int(saved_poll))

        saved_opacity = self.backend.get(OPACITY_KEY)
        if saved_opacity and saved_opacity > 0:
            self.background_opacity = float(saved_opacity)

        saved_lookahead = self.backend.get(LOOKAHEAD_KEY)
        if saved_lookahead and saved_lookahead > 0:
            self.calendar_lookahead_hours = int(saved_lookahead)

        saved_days = self.backend.get(NOTIFICATION_DAYS_KEY)
        if saved_days and saved_days > 0:
            self.notification_days = int(saved_days)

        self._selected_repositories = set(self.backend.get(SELECTED_REPOS_KEY) or [])
        self._active_account = self.backend.get(ACTIVE_ACCOUNT_KEY)
        self._pinned_ids = list(self.backend.get(PINNED_IDS_KEY) or [])
        self._commit_baseline = dict(self.backend.get(COMMIT_BASELINE_KEY) or {})

    # ==================== Service flags ====================

    def is_enabled(self, provider: Provider) -> bool:
        return self.service_configs[provider].enabled

    def is_authenticated(self, provider: Provider) -> bool:
        return self.service_configs[provider].authenticated

    def is_active(self, provider: Provider) -> bool:
        """Enabled, and authenticated where the provider needs OAuth."""
        config = self.service_configs[provider]
        if not config.enabled:
            return False
        return config.authenticated or not provider.uses_oauth

    def set_enabled(self, provider: Provider, enabled: bool) -> None:
        with self._lock:
            self.service_configs[provider].enabled = enabled
            self._save_configs()

    def toggle_enabled(self, provider: Provider) -> bool:
        with self._lock:
            config = self.service_configs[provider]
            config.enabled = not config.enabled
            self._save_configs()
            return config.enabled

    def mark_authenticated(self, provider: Provider, authenticated: bool) -> None:
        with self._lock:
            config = self.service_configs[provider]
            config.authenticated = authenticated
            if authenticated:
                config.enabled = True
            self._save_configs()

    def sync_authentication(self, credentials: CredentialStore) -> None:
        """Reconcile authenticated flags with what the credential store holds."""
        for provider in Provider:
            if not provider.uses_oauth:
                continue
            has_tokens = credentials.has_credentials(provider)
            if has_tokens != self.is_authenticated(provider):
                logger.info(f"{provider.display_name}: authenticated={has_tokens} (synced)")
                self.mark_authenticated(provider, has_tokens)

    def _save_configs(self) -> None:
        self.backend.set(
            SERVICE_CONFIGS_KEY,
            {
                p.value: {"enabled": c.enabled, "authenticated": c.authenticated}
                for p, c in self.service_configs.items()
            },
        )

    # ==================== Preferences ====================

    def set_poll_interval(self, seconds: int) -> None:
        self.poll_interval_seconds = max(MIN_POLL_INTERVAL, int(seconds))
        self.backend.set(POLL_INTERVAL_KEY, self.poll_interval_seconds)

    def set_background_opacity(self, value: float) -> None:
        self.background_opacity = _clamp(float(value), 0.1, 1.0)
        self.backend.set(OPACITY_KEY, self.background_opacity)

    def set_calendar_lookahead(self, hours: int) -> None:
        self.calendar_lookahead_hours = int(_clamp(int(hours), 1, 72))
        self.backend.set(LOOKAHEAD_KEY, self.calendar_lookahead_hours)

    def set_notification_days(self, days: int) -> None:
        self.notification_days = int(_clamp(int(days), 1, 30))
        self.backend.set(NOTIFICATION_DAYS_KEY, self.notification_days)

    # ==================== Repository selection ====================

    @property
    def selected_repositories(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._selected_repositories)

    def set_repository_selected(self, full_name: str, selected: bool) -> None:
        with self._lock:
            if selected:
                self._selected_repositories.add(full_name)
            else:
                self._selected_repositories.discard(full_name)
            self.backend.set(SELECTED_REPOS_KEY, sorted(self._selected_repositories))

    def set_selected_repositories(self, names: set[str] | list[str]) -> None:
        with self._lock:
            self._selected_repositories = set(names)
            self.backend.set(SELECTED_REPOS_KEY, sorted(self._selected_repositories))

    def clear_repository_selection(self) -> None:
        with self._lock:
            self._selected_repositories.clear()
            self.backend.remove(SELECTED_REPOS_KEY)

    # ==================== Active account ====================

    @property
    def active_account(self) -> str | None:
        return self._active_account

    def set_active_account(self, login: str | None) -> None:
        with self._lock:
            self._active_account = login.lower() if login else None
            if self._active_account:
                self.backend.set(ACTIVE_ACCOUNT_KEY, self._active_account)
            else:
                self.backend.remove(ACTIVE_ACCOUNT_KEY)

    # ==================== Pins ====================

    @property
    def pinned_ids(self) -> list[str]:
        with self._lock:
            return list(self._pinned_ids)

    def set_pinned_ids(self, ids: list[str]) -> None:
        with self._lock:
            self._pinned_ids = list(ids)
            self.backend.set(PINNED_IDS_KEY, self._pinned_ids)

    # ==================== Commit baseline ====================

    @property
    def commit_baseline(self) -> dict[str, str]:
        with self._lock:
            return dict(self._commit_baseline)

    def save_commit_baseline(self, baseline: dict[str, str]) -> None:
        with self._lock:
            self._commit_baseline = dict(baseline)
            self.backend.set(COMMIT_BASELINE_KEY, self._commit_baseline)

    def clear_commit_baseline(self) -> None:
        with self._lock:
            self._commit_baseline = {}
            self.backend.remove(COMMIT_BASELINE_KEY)

    # ==================== Snapshot ====================

    def as_dict(self) -> dict[str, Any]:
        return {
            "services": {
                p.value: {"enabled": c.enabled, "authenticated": c.authenticated}
                for p, c in self.service_configs.items()
            },
            "poll_interval_seconds": self.poll_interval_seconds,
            "background_opacity": self.background_opacity,
            "calendar_lookahead_hours": self.calendar_lookahead_hours,
            "notification_days": self.notification_days,
            "selected_repositories": sorted(self.selected_repositories),
            "active_account": self.active_account,
            "pinned_ids": self.pinned_ids,
        }
