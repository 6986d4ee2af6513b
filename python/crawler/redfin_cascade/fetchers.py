"""
Method fetchers.

One fetcher per acquisition method. Each performs the network or browser
interaction through the host's collaborators, classifies the outcome and
returns the raw payload (JSON object or HTML text) for the extractors:

- ApiFetcher: gis search API page
- HtmlFetcher: server rendered search or home page
- BrowserFetcher: page rendered by a freshly launched browser

Every fetch goes through request_with_retry.
"""

import json
import random
from typing import Any, Dict, Tuple
from urllib.parse import urlencode

from playwright.async_api import Error as PlaywrightError

import shared.logger_factory as logger_factory

from .config import (
    API_STATIC_PARAMS,
    BLOCK_PHRASES,
    BLOCK_STATUS,
    BROWSER_INIT_SCRIPT,
    BROWSER_SETTLE_DELAY_MS,
    BROWSER_VIEWPORT,
    DEFAULT_TIMEOUT_MS,
    JSON_PREFIX,
    REDFIN_API_GIS,
    REDFIN_BASE,
    USER_AGENTS,
)
from .errors import BlockedError, TransientFetchError
from .interfaces import BrowserLauncher, HttpClient, HttpResponse, ProxyProvisioner
from .items import RegionTarget, RunStats
from .retry import RetryPolicy, request_with_retry


def pick_user_agent() -> str:
    return random.choice(USER_AGENTS)


def build_stealth_headers(user_agent: str, referer: str = REDFIN_BASE) -> Dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Referer": referer,
        "Sec-Ch-Ua": '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
        "Sec-Ch-Ua-Mobile": "?0",
        "Sec-Ch-Ua-Platform": '"Windows"',
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "same-origin",
        "Upgrade-Insecure-Requests": "1",
    }


def build_api_headers(user_agent: str, referer: str = REDFIN_BASE) -> Dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "application/json, text/javascript, */*; q=0.01",
        "Accept-Language": "en-US,en;q=0.9",
        "Content-Type": "application/json;charset=UTF-8",
        "X-Requested-With": "XMLHttpRequest",
        "Referer": referer,
        "Cache-Control": "no-cache",
    }


def find_block_phrase(body: str | None) -> str | None:
    """Challenge page phrase contained in body (any case), if any."""
    if not body:
        return None
    lowered = body.lower()
    for phrase in BLOCK_PHRASES:
        if phrase in lowered:
            return phrase
    return None


def check_response(response: HttpResponse, url: str, check_body: bool) -> None:
    """
    Raise for anything but a usable 200.

    403/429/503 and challenge pages are blocking; other statuses are transient.
    """
    if response.status_code in BLOCK_STATUS:
        raise BlockedError(f"Blocked ({response.status_code})", status_code=response.status_code, url=url)
    if response.status_code != 200:
        raise TransientFetchError(f"Unexpected status {response.status_code}", url=url, status_code=response.status_code)
    if check_body:
        phrase = find_block_phrase(response.text)
        if phrase:
            raise BlockedError(f"HTML response indicates blocking ('{phrase}')", status_code=response.status_code, url=url)


class _Fetcher:
    def __init__(
            self,
            policy: RetryPolicy,
            proxy_provisioner: ProxyProvisioner | None = None,
            timeout_ms: int = DEFAULT_TIMEOUT_MS,
            ):
        self._policy = policy
        self._proxy_provisioner = proxy_provisioner
        self._timeout_ms = timeout_ms

    async def _proxy_url(self) -> str | None:
        # Fresh proxy per attempt, no session affinity
        if self._proxy_provisioner is None:
            return None
        return await self._proxy_provisioner.new_url()


class ApiFetcher(_Fetcher):
    """Pages of the gis search API."""

    def __init__(
            self,
            http_client: HttpClient,
            policy: RetryPolicy,
            page_size: int = 200,
            proxy_provisioner: ProxyProvisioner | None = None,
            timeout_ms: int = DEFAULT_TIMEOUT_MS,
            stats: RunStats | None = None,
            ):
        super().__init__(policy, proxy_provisioner, timeout_ms)
        self._http_client = http_client
        self._page_size = page_size
        self._stats = stats

    def build_url(self, target: RegionTarget, page: int) -> str:
        params: Dict[str, Any] = {
            "al": API_STATIC_PARAMS["al"],
            "market": target.market or "market",
            "num_homes": self._page_size,
            "page_number": page,
            "region_id": target.region_id,
            "region_type": target.region_type,
        }
        params.update({key: value for key, value in API_STATIC_PARAMS.items() if key not in params})
        return f"{REDFIN_API_GIS}?{urlencode(params)}"

    async def fetch_page(self, target: RegionTarget, page: int) -> Any:
        """
        Fetch one result page.

        Returns:
            Parsed JSON payload with the "{}&&" sentinel removed

        Raises:
            BlockedError: 403/429/503 once the retry budget is spent
            TransientFetchError: other statuses, network failures, malformed JSON
        """
        url = self.build_url(target, page)

        async def attempt(attempt_number: int) -> Any:
            if self._stats is not None:
                self._stats.api_calls += 1
            response = await self._http_client.fetch(
                url,
                build_api_headers(pick_user_agent(), target.url),
                await self._proxy_url(),
                self._timeout_ms / 1000,
            )
            check_response(response, url, check_body=False)
            cleaned = JSON_PREFIX.sub("", response.text, count=1).strip()
            try:
                return json.loads(cleaned)
            except ValueError as error:
                raise TransientFetchError(f"Malformed JSON payload: {error}", url=url) from error

        return await request_with_retry(attempt, label=f"json-api p{page}", policy=self._policy)


class HtmlFetcher(_Fetcher):
    """Server rendered search and home pages."""

    def __init__(
            self,
            http_client: HttpClient,
            policy: RetryPolicy,
            proxy_provisioner: ProxyProvisioner | None = None,
            timeout_ms: int = DEFAULT_TIMEOUT_MS,
            ):
        super().__init__(policy, proxy_provisioner, timeout_ms)
        self._http_client = http_client

    async def fetch(self, url: str) -> str:
        """
        Fetch a page body.

        A 200 carrying a challenge page raises BlockedError like a 403 would,
        so it never reaches the extractors.
        """
        async def attempt(attempt_number: int) -> str:
            response = await self._http_client.fetch(
                url,
                build_stealth_headers(pick_user_agent(), url),
                await self._proxy_url(),
                self._timeout_ms / 1000,
            )
            check_response(response, url, check_body=True)
            return response.text

        return await request_with_retry(attempt, label=f"html {url}", policy=self._policy)


class BrowserFetcher(_Fetcher):
    """Pages rendered by an isolated browser session per call."""

    def __init__(
            self,
            launcher: BrowserLauncher,
            policy: RetryPolicy,
            proxy_provisioner: ProxyProvisioner | None = None,
            timeout_ms: int = DEFAULT_TIMEOUT_MS,
            settle_delay_ms: Tuple[int, int] = BROWSER_SETTLE_DELAY_MS,
            ):
        super().__init__(policy, proxy_provisioner, timeout_ms)
        self._launcher = launcher
        self._settle_delay_ms = settle_delay_ms

    async def _render(self, url: str) -> str:
        logger = logger_factory.get_logger(__name__)
        user_agent = pick_user_agent()
        async with self._launcher.launch(await self._proxy_url()) as browser:
            context = None
            page = None
            try:
                context = await browser.new_context(
                    user_agent=user_agent,
                    viewport=dict(BROWSER_VIEWPORT),
                    ignore_https_errors=True,
                    extra_http_headers=build_stealth_headers(user_agent, url),
                )
                await context.add_init_script(BROWSER_INIT_SCRIPT)
                page = await context.new_page()
                await page.goto(url, wait_until="networkidle", timeout=self._timeout_ms)
                low, high = sorted(self._settle_delay_ms)
                await page.wait_for_timeout(random.randint(low, high))
                return await page.content()
            finally:
                for resource in (page, context):
                    if resource is None:
                        continue
                    try:
                        await resource.close()
                    except PlaywrightError as error:
                        logger.debug(f"Ignoring browser teardown error for {url}: {error}")

    async def fetch(self, url: str) -> str:
        async def attempt(attempt_number: int) -> str:
            try:
                content = await self._render(url)
            except PlaywrightError as error:
                raise TransientFetchError(f"Browser fetch failed: {error}", url=url) from error
            phrase = find_block_phrase(content)
            if phrase:
                raise BlockedError(f"Rendered page indicates blocking ('{phrase}')", url=url)
            return content

        return await request_with_retry(attempt, label=f"playwright {url}", policy=self._policy)
