from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List
from urllib.parse import unquote, urlsplit

from playwright.async_api import Browser, async_playwright

from .config import BROWSER_LAUNCH_ARGS


def playwright_proxy_settings(proxy_url: str) -> Dict[str, str]:
    """Playwright wants the credentials apart from the server address."""
    parts = urlsplit(proxy_url)
    if not parts.hostname:
        return {"server": proxy_url}
    server = f"{parts.scheme or 'http'}://{parts.hostname}"
    if parts.port:
        server += f":{parts.port}"
    settings = {"server": server}
    if parts.username:
        settings["username"] = unquote(parts.username)
    if parts.password:
        settings["password"] = unquote(parts.password)
    return settings


class PlaywrightBrowserLauncher:
    """Launches a fresh headless Chromium per call and stops it on exit."""

    def __init__(self, headless: bool = True, launch_args: List[str] | None = None, launch_timeout_ms: int = 20 * 1000):
        self.headless = headless
        self.launch_args = launch_args if launch_args is not None else list(BROWSER_LAUNCH_ARGS)
        self.launch_timeout_ms = launch_timeout_ms

    @asynccontextmanager
    async def launch(self, proxy_url: str | None) -> AsyncIterator[Browser]:
        launch_options: Dict[str, Any] = {
            "headless": self.headless,
            "args": self.launch_args,
            "timeout": self.launch_timeout_ms,
        }
        if proxy_url:
            launch_options["proxy"] = playwright_proxy_settings(proxy_url)

        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(**launch_options)
            try:
                yield browser
            finally:
                await browser.close()
