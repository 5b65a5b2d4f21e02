"""
eventsync.runtime.browser

Playwright-based renderer for JS-heavy pages (social event pages, discovery
listings that only expose their data after hydration).

The renderer is created explicitly by the adapter that needs it and started
lazily on first use. Playwright's sync API is bound to the thread that
started it, so the adapter closes the renderer at the end of each fetch, on
the crawl worker that used it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Sequence
from urllib.parse import urlparse, urlunparse

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from eventsync.runtime.blocks import is_login_wall

logger = logging.getLogger(__name__)

DEFAULT_BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

# Overlays hidden before reading the DOM of a login-walled page.
OVERLAY_CSS = """
[role='dialog'],
[aria-modal='true'],
#login_popup_cta_form,
div[data-testid='login_form'],
div[data-testid='cookie-policy-banner'],
div[data-testid='cookie-policy-manage-dialog'] {
  display: none !important;
}
body { overflow: auto !important; }
"""


@dataclass
class BrowserOptions:
    headless: bool = True
    nav_timeout_s: float = 45.0
    selector_timeout_s: float = 5.0
    idle_timeout_s: float = 5.0
    user_agent: str = DEFAULT_BROWSER_UA
    viewport: dict[str, int] = field(
        default_factory=lambda: {"width": 1280, "height": 720}
    )
    locale: str = "en-US"
    launch_args: tuple[str, ...] = (
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    )


@dataclass
class RenderedPage:
    url: str
    html: str
    title: str | None = None
    content_visible: bool = False
    login_wall: bool = False


def to_mobile_url(url: str) -> str:
    """Rewrite a facebook.com URL to its m.facebook.com twin."""
    parsed = urlparse(url)
    host = parsed.hostname or ""
    if not host.endswith("facebook.com") or host == "m.facebook.com":
        return url
    return urlunparse(parsed._replace(netloc="m.facebook.com"))


class BrowserRenderer:
    """Sync façade over a single Playwright browser context."""

    def __init__(self, *, options: BrowserOptions | None = None) -> None:
        self.options = options or BrowserOptions()
        self._pw = None
        self._browser = None
        self._context = None
        self._owner_thread: int | None = None

    # -------------------------
    # Lifecycle
    # -------------------------

    @property
    def started(self) -> bool:
        return self._pw is not None

    def _ensure_started(self) -> None:
        if self._context is not None:
            return
        self._pw = sync_playwright().start()
        self._owner_thread = threading.get_ident()
        self._browser = self._pw.chromium.launch(
            headless=self.options.headless,
            args=list(self.options.launch_args),
            chromium_sandbox=False,
        )
        self._context = self._browser.new_context(
            viewport=self.options.viewport,
            user_agent=self.options.user_agent,
            locale=self.options.locale,
        )

    def close(self) -> None:
        """
        Stop the browser on the thread that started it.

        From any other thread the handles are dropped without touching the
        driver, which cannot switch threads.
        """
        if not self.started:
            return
        if self._owner_thread != threading.get_ident():
            logger.warning("Browser closed from a foreign thread; dropping handles")
            self._reset()
            return

        for closer in (self._context, self._browser):
            if closer is not None:
                try:
                    closer.close()
                except PlaywrightError as e:
                    logger.debug(f"Browser close failed: {e}")
        try:
            self._pw.stop()
        except PlaywrightError as e:
            logger.debug(f"Playwright stop failed: {e}")
        self._reset()

    def _reset(self) -> None:
        self._pw = self._browser = self._context = None
        self._owner_thread = None

    def __enter__(self) -> "BrowserRenderer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -------------------------
    # Rendering
    # -------------------------

    def render(
        self,
        url: str,
        *,
        wait_selectors: Sequence[str] = (),
        hide_overlays: bool = True,
        mobile_fallback: bool = True,
    ) -> RenderedPage:
        """
        Navigate to `url` and return the rendered HTML.

        When the page shows a login wall and none of `wait_selectors` is
        present, the mobile host is tried once.
        """
        self._ensure_started()
        page = self._context.new_page()
        try:
            rendered = self._load(page, url, wait_selectors, hide_overlays)
            if rendered.login_wall and not rendered.content_visible and mobile_fallback:
                mobile_url = to_mobile_url(url)
                if mobile_url != url:
                    logger.warning(f"Login wall detected; retrying via mobile site: {url}")
                    rendered = self._load(page, mobile_url, wait_selectors, hide_overlays)
            if rendered.login_wall and not rendered.content_visible:
                logger.warning(
                    "Login wall still present; parsing rendered HTML anyway"
                )
            return rendered
        finally:
            page.close()

    def evaluate(self, url: str, expression: str) -> Any:
        """Navigate to `url` and evaluate a JS expression in the page."""
        self._ensure_started()
        page = self._context.new_page()
        try:
            page.goto(
                url,
                timeout=self.options.nav_timeout_s * 1000,
                wait_until="domcontentloaded",
            )
            return page.evaluate(expression)
        finally:
            page.close()

    def _load(self, page, url: str, wait_selectors: Sequence[str], hide_overlays: bool) -> RenderedPage:
        page.goto(url, timeout=self.options.nav_timeout_s * 1000, wait_until="domcontentloaded")

        selector_hit = False
        for selector in wait_selectors:
            try:
                page.wait_for_selector(selector, timeout=self.options.selector_timeout_s * 1000)
                selector_hit = True
                break
            except PlaywrightError:
                continue

        if hide_overlays:
            try:
                page.add_style_tag(content=OVERLAY_CSS)
            except PlaywrightError:
                pass

        try:
            page.wait_for_load_state("networkidle", timeout=self.options.idle_timeout_s * 1000)
        except PlaywrightError:
            # dynamic pages often keep connections alive
            pass

        html = page.content()
        if not selector_hit and wait_selectors:
            selector_hit = any(page.query_selector(s) is not None for s in wait_selectors)

        try:
            title = page.title()
        except PlaywrightError:
            title = None

        return RenderedPage(
            url=url,
            html=html,
            title=title,
            content_visible=selector_hit,
            login_wall=is_login_wall(html),
        )
