# scraper/renderer.py
import asyncio
import os
from typing import Dict, Optional, Protocol

from dotenv import load_dotenv
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .errors import NavigationError, RendererUnavailable, message_is_retryable
from .platforms import DEFAULT_USER_AGENT

load_dotenv()
BROWSER_ENABLED = os.getenv("SCRAPER_BROWSER_ENABLED", "true").lower() in ("1", "true", "yes")
BROWSER_HEADLESS = os.getenv("SCRAPER_BROWSER_HEADLESS", "true").lower() in ("1", "true", "yes")

VIEWPORT = {"width": 1366, "height": 768}


class RenderSession(Protocol):
    """One isolated browser session. Must be closed by whoever opened it."""

    async def goto(self, url: str, wait_until: str, timeout_ms: int) -> None: ...

    async def content(self) -> str: ...

    async def close(self) -> None: ...


class PageRenderer(Protocol):
    """Capability: render a URL in a browser and hand back its DOM."""

    available: bool

    async def open_session(self, headers: Dict[str, str]) -> RenderSession: ...

    async def close(self) -> None: ...


class PlaywrightSession:
    def __init__(self, context, page):
        self.context = context
        self.page = page

    async def goto(self, url, wait_until, timeout_ms):
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Navigation to {url} failed: {e}", retryable=True) from e
        except Exception as e:
            # playwright repeats the URL in its messages, classify without it
            detail = str(e).replace(url, "")
            raise NavigationError(
                f"Navigation to {url} failed: {e}", retryable=message_is_retryable(detail)
            ) from e

    async def content(self):
        return await self.page.content()

    async def close(self):
        await self.context.close()


class PlaywrightRenderer:
    """
    Chromium via Playwright.

    The browser is launched once, lazily, and shared; every session gets its
    own fresh browser context so cookies and storage never leak between
    attempts. Concurrent jobs share the renderer, so the launch is
    serialised and only ever happens once.
    """

    available = True

    def __init__(self, headless=BROWSER_HEADLESS):
        self.headless = headless
        self._playwright = None
        self._browser = None
        self._lock = None

    def _get_lock(self):
        # created on first use so it binds to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def start(self):
        async with self._get_lock():
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=["--disable-dev-shm-usage", "--disable-blink-features=AutomationControlled"],
                )
        return self._browser

    async def open_session(self, headers):
        browser = await self.start()
        extra = {k: v for k, v in headers.items() if k.lower() != "user-agent"}
        context = await browser.new_context(
            user_agent=headers.get("User-Agent", DEFAULT_USER_AGENT),
            extra_http_headers=extra,
            viewport=VIEWPORT,
        )
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise
        return PlaywrightSession(context, page)

    async def close(self):
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class UnavailableRenderer:
    """Stand-in used when browser automation is switched off."""

    available = False

    async def open_session(self, headers):
        raise RendererUnavailable("Browser automation is not available")

    async def close(self):
        return None


def build_renderer(enabled: Optional[bool] = None):
    """Pick the renderer once at startup from SCRAPER_BROWSER_ENABLED."""
    if enabled is None:
        enabled = BROWSER_ENABLED
    return PlaywrightRenderer() if enabled else UnavailableRenderer()
