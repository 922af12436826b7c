"""Interactive authorization presenter.

Opens the provider's consent page in the system browser and waits for the
redirect on a loopback HTTP listener. Several providers may be mid-consent
at once; callbacks are routed to the pending flow by their ``state`` nonce.
"""

from __future__ import annotations

import asyncio
import html
import logging
import webbrowser
from collections.abc import Callable
from typing import Protocol
from urllib.parse import parse_qs, urlparse

from aiohttp import web

from workfeed.errors import UserCancelledError

logger = logging.getLogger(__name__)

_PAGE = (
    "<!DOCTYPE html><html><head><meta charset='utf-8'>"
    "<style>body{font-family:system-ui;display:flex;justify-content:center;"
    "align-items:center;height:100vh;margin:0;background:#1c1c1e;color:#f2f2f7}</style>"
    "</head><body><div>{body}</div></body></html>"
)


class AuthorizationPresenter(Protocol):
    async def present(self, authorize_url: str, redirect_uri: str) -> str:
        """Return the redirect URL the provider sent the user back to.

        Raises ``UserCancelledError`` when the user abandons the flow.
        """
        ...


class ConsentCallback:
    """Single-resolution bridge between the consent flow and its awaiting caller.

    ``resolve``/``cancel``/``fail`` may be called from any thread; only the
    first call has an effect.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future[str] = self._loop.create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, callback_url: str) -> None:
        self._settle(lambda f: f.set_result(callback_url))

    def cancel(self) -> None:
        self._settle(lambda f: f.set_exception(UserCancelledError()))

    def fail(self, exc: BaseException) -> None:
        self._settle(lambda f: f.set_exception(exc))

    def _settle(self, action: Callable[[asyncio.Future[str]], None]) -> None:
        def apply() -> None:
            if not self._future.done():
                action(self._future)

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            apply()
        else:
            self._loop.call_soon_threadsafe(apply)

    async def wait(self, timeout: float | None = None) -> str:
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except TimeoutError as e:
            self.cancel()
            raise UserCancelledError("Authorization timed out") from e


class LoopbackAuthorizationPresenter:
    """System browser + local redirect listener."""

    def __init__(
        self,
        timeout: float = 120.0,
        open_browser: Callable[[str], object] = webbrowser.open,
    ) -> None:
        self.timeout = timeout
        self._open_browser = open_browser
        self._pending: dict[str, ConsentCallback] = {}
        self._runner: web.AppRunner | None = None
        self._lock = asyncio.Lock()

    async def present(self, authorize_url: str, redirect_uri: str) -> str:
        state = parse_qs(urlparse(authorize_url).query).get("state", [""])[0]
        callback = ConsentCallback()

        async with self._lock:
            await self._ensure_listener(redirect_uri)
            self._pending[state] = callback

        try:
            logger.info("Opening browser for authorization")
            self._open_browser(authorize_url)
            return await callback.wait(self.timeout)
        finally:
            async with self._lock:
                self._pending.pop(state, None)
                if not self._pending:
                    await self._stop_listener()

    async def _ensure_listener(self, redirect_uri: str) -> None:
        if self._runner is not None:
            return
        parsed = urlparse(redirect_uri)
        app = web.Application()
        app.router.add_get(parsed.path or "/", self._handle_callback)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, parsed.hostname or "127.0.0.1", parsed.port or 80)
        await site.start()
        logger.debug(f"Authorization listener on {parsed.hostname}:{parsed.port}")

    async def _stop_listener(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def _handle_callback(self, request: web.Request) -> web.Response:
        state = request.query.get("state", "")
        callback = self._pending.get(state)
        if callback is None and len(self._pending) == 1:
            # Let the engine reject the unknown state itself
            callback = next(iter(self._pending.values()))
        if callback is None:
            return self._html("<h2>No authorization in progress</h2>", status=400)

        callback.resolve(str(request.url))
        if "error" in request.query:
            reason = html.escape(request.query["error"])
            return self._html(f"<h2>Authorization failed</h2><p>{reason}</p>")
        return self._html("<h2>Connected</h2><p>You can close this tab.</p>")

    @staticmethod
    def _html(body: str, *, status: int = 200) -> web.Response:
        return web.Response(
            text=_PAGE.replace("{body}", body), status=status, content_type="text/html"
        )
