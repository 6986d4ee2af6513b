"""
Fallback orchestration.

For each region target the scraper walks the method states

    TryApi -> TryHtml -> TryBrowser -> Done

skipping disabled methods, until the requested number of records is saved,
every method is exhausted or the wall-clock budget runs out. Listings of a
page fan out to a bounded pool that fetches the detail page, reconciles the
record and pushes it to the dataset right away.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Sequence

import shared.logger_factory as logger_factory

from .errors import BlockedError, FatalScrapeError, ScrapeErrorCode
from .fetchers import ApiFetcher, BrowserFetcher, HtmlFetcher
from .interfaces import BrowserLauncher, DatasetSink, HttpClient, KeyValueStore, ProxyProvisioner
from .items import DedupSet, PartialRecord, PropertySource, RegionTarget, RunStats
from .parser import parse_homes_from_api, parse_html_detail, parse_html_list_page
from .reconciler import build_property
from .retry import RetryPolicy
from .settings import ScrapeInput

OUTPUT_SUMMARY_KEY = "OUTPUT_SUMMARY"
NO_RESULTS_MESSAGE = "Failed to scrape any properties. Check proxy, region ID, or Redfin availability."


class ScrapeState(Enum):
    TryApi = "TryApi"
    TryHtml = "TryHtml"
    TryBrowser = "TryBrowser"
    Done = "Done"


_METHOD_ORDER: List[ScrapeState] = [ScrapeState.TryApi, ScrapeState.TryHtml, ScrapeState.TryBrowser]


@dataclass(frozen=True)
class RunSummary:
    properties_saved: int
    runtime_seconds: float
    methods_used: List[str]

    def to_output(self) -> Dict[str, Any]:
        return {
            "propertiesSaved": self.properties_saved,
            "runtimeSeconds": self.runtime_seconds,
            "methodsUsed": list(self.methods_used),
        }


def html_page_url(url: str, page: int) -> str:
    """Search page URL for a 1-based page number."""
    if page <= 1:
        return url
    return f"{url}{'&' if '?' in url else '?'}page={page}"


class RedfinCascadeScraper:
    """Runs one scrape: owns the dedup set, the statistics and the fetchers."""

    def __init__(
            self,
            scrape_input: ScrapeInput,
            http_client: HttpClient,
            dataset: DatasetSink,
            key_value_store: KeyValueStore,
            browser_launcher: BrowserLauncher | None = None,
            proxy_provisioner: ProxyProvisioner | None = None,
            retry_policy: RetryPolicy | None = None,
            clock: Callable[[], float] = time.monotonic,
            ):
        self.input = scrape_input
        self.stats = RunStats()
        self.seen = DedupSet()
        self._dataset = dataset
        self._key_value_store = key_value_store
        self._clock = clock
        self._deadline: float | None = None
        self._deadline_logged = False
        self._limiter: asyncio.Semaphore | None = None
        self.logger = logger_factory.get_logger(__name__)

        policy = retry_policy or scrape_input.retry_policy()
        self._api = ApiFetcher(
            http_client,
            policy,
            page_size=scrape_input.page_size,
            proxy_provisioner=proxy_provisioner,
            timeout_ms=scrape_input.request_timeout_ms,
            stats=self.stats,
        )
        self._html = HtmlFetcher(
            http_client,
            policy,
            proxy_provisioner=proxy_provisioner,
            timeout_ms=scrape_input.request_timeout_ms,
        )
        self._browser = BrowserFetcher(
            browser_launcher,
            policy,
            proxy_provisioner=proxy_provisioner,
            timeout_ms=scrape_input.request_timeout_ms,
        ) if browser_launcher is not None else None

    """
    Public
    """
    async def run(self) -> RunSummary:
        """
        Scrape every start URL and persist the run summary.

        Raises:
            FatalScrapeError: no region could be resolved, or nothing was saved
        """
        start_time = self._clock()
        self._deadline = start_time + self.input.max_run_time_secs
        self._limiter = asyncio.Semaphore(self.input.max_concurrency)

        targets = self._resolve_targets()
        self.logger.info("Starting Redfin Property Scraper (JSON-first, HTML fallback)")

        for target in targets:
            if self._should_stop():
                break
            self.logger.info(
                f"Target: region {target.region_id} (type {target.region_type}), market={target.market}"
            )
            saved_before = self.stats.properties_saved
            await self._scrape_target(target)
            if self.stats.properties_saved == saved_before:
                self.logger.warning(f"No results found for target {target.url}.")

        runtime_seconds = round(self._clock() - start_time, 2)
        self._log_final_statistics(runtime_seconds)

        if self.stats.properties_saved == 0:
            self.logger.error(NO_RESULTS_MESSAGE)
            raise FatalScrapeError(NO_RESULTS_MESSAGE, ScrapeErrorCode.FatalNoResults, self.stats)

        summary = RunSummary(
            properties_saved=self.stats.properties_saved,
            runtime_seconds=runtime_seconds,
            methods_used=list(self.stats.methods_used),
        )
        await self._key_value_store.set_value(OUTPUT_SUMMARY_KEY, summary.to_output())
        return summary

    def quota_reached(self) -> bool:
        return self.stats.properties_saved >= self.input.results_wanted

    def time_exceeded(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    """
    State machine
    """
    def _resolve_targets(self) -> List[RegionTarget]:
        if not self.input.start_urls:
            raise FatalScrapeError("Provide startUrl.", ScrapeErrorCode.FatalNoRegion)

        targets: List[RegionTarget] = []
        for url in self.input.start_urls:
            target = RegionTarget.from_url(url, self.input.region_id, self.input.region_type)
            if target is None:
                self.logger.warning(f"Could not extract region ID from {url}. Skipping.")
                continue
            targets.append(target)

        if not targets:
            raise FatalScrapeError(
                f"Could not resolve a region from any start URL: {', '.join(self.input.start_urls)}",
                ScrapeErrorCode.FatalNoRegion,
                self.input.start_urls,
            )
        return targets

    def _method_enabled(self, state: ScrapeState) -> bool:
        if state is ScrapeState.TryApi:
            return self.input.prefer_json
        if state is ScrapeState.TryHtml:
            return self.input.use_html_fallback
        if state is ScrapeState.TryBrowser:
            if self.input.use_playwright and self._browser is None:
                self.logger.warning("usePlaywright is set but no browser launcher is configured")
            return self.input.use_playwright and self._browser is not None
        return False

    def _next_state(self, current: ScrapeState | None) -> ScrapeState:
        start = 0 if current is None else _METHOD_ORDER.index(current) + 1
        for state in _METHOD_ORDER[start:]:
            if self._method_enabled(state):
                return state
        return ScrapeState.Done

    def _should_stop(self) -> bool:
        if self.quota_reached():
            return True
        if self.time_exceeded():
            if not self._deadline_logged:
                self.logger.warning(f"Run time budget of {self.input.max_run_time_secs}s exceeded, stopping")
                self._deadline_logged = True
            return True
        return False

    async def _scrape_target(self, target: RegionTarget) -> None:
        state = self._next_state(None)
        while state is not ScrapeState.Done:
            if self._should_stop():
                return
            self.logger.info(f"Region {target.region_id}: entering {state.value}")
            if state is ScrapeState.TryApi:
                await self._run_api(target)
            elif state is ScrapeState.TryHtml:
                await self._run_html(target)
            elif state is ScrapeState.TryBrowser:
                await self._run_browser(target)
            state = self._next_state(state)

    async def _run_api(self, target: RegionTarget) -> None:
        for page in range(1, self.input.max_pages + 1):
            if self._should_stop():
                return
            try:
                payload = await self._api.fetch_page(target, page)
            except BlockedError as error:
                self.stats.errors += 1
                self.logger.warning(f"JSON API page {page} blocked: {error}. Abandoning JSON API for this target")
                return
            except Exception as error:
                self.stats.errors += 1
                self.logger.warning(f"JSON API page {page} failed: {error}")
                continue

            listings = parse_homes_from_api(payload)
            if not listings:
                self.logger.info(f"JSON API returned no homes on page {page}")
                return
            self.stats.api_pages += 1
            self.logger.info(f"JSON API page {page}: {len(listings)} homes")

            await self._dispatch(listings, PropertySource.JsonApi)
            if self.quota_reached():
                return
            await self._pace()

    async def _run_html(self, target: RegionTarget) -> None:
        for page in range(1, self.input.max_pages + 1):
            if self._should_stop():
                return
            page_url = html_page_url(target.url, page)
            try:
                html = await self._html.fetch(page_url)
            except BlockedError as error:
                self.stats.errors += 1
                self.logger.warning(f"HTML page {page} blocked: {error}. Abandoning HTML for this target")
                return
            except Exception as error:
                self.stats.errors += 1
                self.logger.warning(f"HTML fallback failed for page {page}: {error}")
                continue

            listings = parse_html_list_page(html)
            if not listings:
                self.logger.info(f"HTML page {page} has no listings")
                return
            self.stats.html_pages += 1
            self.logger.info(f"HTML page {page}: {len(listings)} listings")

            await self._dispatch(listings, PropertySource.Html)
            if self.quota_reached():
                return
            await self._pace()

    async def _run_browser(self, target: RegionTarget) -> None:
        assert self._browser is not None
        try:
            html = await self._browser.fetch(target.url)
        except Exception as error:
            self.stats.errors += 1
            self.logger.warning(f"Playwright fallback failed: {error}")
            return

        listings = parse_html_list_page(html)
        if not listings:
            self.logger.info("Playwright rendered page has no listings")
            return
        self.stats.browser_pages += 1
        self.logger.info(f"Playwright page: {len(listings)} listings")
        await self._dispatch(listings, PropertySource.Playwright)

    """
    Listing processing
    """
    async def _dispatch(self, listings: Sequence[PartialRecord], source: PropertySource) -> None:
        # FIFO admission through the semaphore, completion in any order
        await asyncio.gather(*(self._process_listing(listing, source) for listing in listings))

    def _claim(self, listing: PartialRecord) -> bool:
        """Reserve a quota slot and the listing identity; no suspension in between."""
        if self.stats.reserved >= self.input.results_wanted:
            return False
        identity = listing.identity
        if identity is None:
            self.logger.debug("Skipping listing without id or URL")
            return False
        if not self.seen.claim(identity):
            self.logger.debug(f"Skipping duplicate listing {identity}")
            return False
        self.stats.reserved += 1
        return True

    async def _process_listing(self, listing: PartialRecord, source: PropertySource) -> None:
        assert self._limiter is not None
        async with self._limiter:
            if not self._claim(listing):
                return
            try:
                detail = None
                if self.input.collect_details and listing.url:
                    detail = await self._fetch_detail(listing.url)
                item = build_property(listing, detail, source)
                if item is None:
                    self.stats.reserved -= 1
                    return
                await self._dataset.push_data(item)
            except Exception as error:
                self.stats.reserved -= 1
                self.stats.errors += 1
                self.logger.error(f"Failed to save listing {listing.identity}: {error}", exc_info=True)
                return
            self.stats.record_saved(source)
            self.logger.debug(f"Saved {item.propertyId} ({source.value}), total {self.stats.properties_saved}")

    async def _fetch_detail(self, url: str) -> PartialRecord | None:
        await self._pace()
        self.stats.detail_fetches += 1
        try:
            html = await self._html.fetch(url)
        except Exception as error:
            self.stats.errors += 1
            self.logger.warning(f"Detail fetch failed for {url}: {error}")
            return None
        return parse_html_detail(html)

    async def _pace(self) -> None:
        low, high = self.input.delay_min_ms, self.input.delay_max_ms
        delay_ms = random.randint(low, high) if high > 0 else 0
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    def _log_final_statistics(self, runtime_seconds: float) -> None:
        methods_used = ", ".join(self.stats.methods_used) or "none"
        self.logger.info("=" * 70)
        self.logger.info("FINAL STATISTICS")
        self.logger.info("=" * 70)
        self.logger.info(f"Properties Saved: {self.stats.properties_saved}/{self.input.results_wanted}")
        self.logger.info(
            f"API Pages: {self.stats.api_pages}, HTML Pages: {self.stats.html_pages}, "
            f"Browser Pages: {self.stats.browser_pages}"
        )
        self.logger.info(f"API Calls: {self.stats.api_calls}, Detail Fetches: {self.stats.detail_fetches}")
        self.logger.info(f"Errors: {self.stats.errors}")
        self.logger.info(f"Runtime: {runtime_seconds:.2f}s")
        self.logger.info(f"Methods Used: {methods_used}")
        self.logger.info("=" * 70)
