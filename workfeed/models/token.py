"""OAuth token bundle and account identity models."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class TokenBundle:
    """Access token plus optional refresh token and expiry.

    A bundle without ``refresh_token`` and ``expires_at`` is a durable
    token and is never refreshed.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> TokenBundle:
        data = json.loads(raw)
        expires_at = data.get("expires_at")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )


@dataclass(frozen=True)
class AccountIdentity:
    """Stable identifier for one account of a multi-account provider."""

    account_id: str
    display_name: str
