"""Per-provider enablement record."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ServiceConfig:
    enabled: bool = False
    authenticated: bool = False
