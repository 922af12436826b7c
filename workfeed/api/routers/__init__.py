"""API Routers package

Routers are organized by feature domain.
"""

from . import auth_router, feed_router, settings_router

__all__ = [
    "auth_router",
    "feed_router",
    "settings_router",
]
