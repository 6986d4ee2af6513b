import itertools
import json
import unittest
from typing import Callable, Dict, List

from crawler.redfin_cascade.errors import FatalScrapeError, ScrapeErrorCode
from crawler.redfin_cascade.interfaces import HttpResponse
from crawler.redfin_cascade.orchestrator import (
    OUTPUT_SUMMARY_KEY,
    RedfinCascadeScraper,
    ScrapeState,
    html_page_url,
)
from crawler.redfin_cascade.settings import ScrapeInput
from crawler.redfin_cascade.test.test_utils import (
    CHICAGO_URL,
    NO_DELAY_POLICY,
    FakeBrowserLauncher,
    FakeDatasetSink,
    FakeHttpClient,
    FakeKeyValueStore,
    api_page_number,
    configure_test_logger,
    html_page_number,
    is_api_url,
    make_api_body,
    make_api_home,
    make_card,
    make_detail_page,
    make_search_page,
    ok,
    status,
)

EMPTY_PAGE = "<html><body><p>No homes</p></body></html>"


def json_ld_page(home_ids: List[int]) -> str:
    items = [
        {"@type": "SingleFamilyResidence", "url": f"/IL/Chicago/{home_id}-Main-St-60614/home/{home_id}"}
        for home_id in home_ids
    ]
    return f'<html><head><script type="application/ld+json">{json.dumps(items)}</script></head><body></body></html>'


def site(
        api_pages: Dict[int, HttpResponse] | None = None,
        html_pages: Dict[int, HttpResponse] | None = None,
        detail: Callable[[str], HttpResponse] | None = None,
        ) -> Callable[[str], HttpResponse]:
    """Handler serving numbered API and search pages; anything else is an empty 200."""
    def handler(url: str) -> HttpResponse:
        if is_api_url(url):
            return (api_pages or {}).get(api_page_number(url), ok(make_api_body([])))
        if "/home/" in url:
            return detail(url) if detail else ok(EMPTY_PAGE)
        return (html_pages or {}).get(html_page_number(url), ok(EMPTY_PAGE))
    return handler


def api_ok(home_ids: List[int]) -> HttpResponse:
    return ok(make_api_body([make_api_home(home_id) for home_id in home_ids]))


def html_ok(home_ids: List[int]) -> HttpResponse:
    return ok(make_search_page([make_card(home_id) for home_id in home_ids]))


class TestOrchestrator_Base(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        configure_test_logger()
        self.dataset = FakeDatasetSink()
        self.key_value_store = FakeKeyValueStore()

    def make_scraper(self, handler, launcher=None, clock=None, **input_fields) -> RedfinCascadeScraper:
        fields = {
            "start_urls": [CHICAGO_URL],
            "collect_details": False,
            "delay_min_ms": 0,
            "delay_max_ms": 0,
        }
        fields.update(input_fields)
        self.client = FakeHttpClient(handler)
        extra = {"clock": clock} if clock else {}
        return RedfinCascadeScraper(
            ScrapeInput(**fields),
            http_client=self.client,
            dataset=self.dataset,
            key_value_store=self.key_value_store,
            browser_launcher=launcher,
            retry_policy=NO_DELAY_POLICY,
            **extra,
        )

    def saved_ids(self) -> List[str]:
        return [item.propertyId for item in self.dataset.items]


class TestOrchestrator_JsonApi(TestOrchestrator_Base):
    async def test_quota_stops_before_next_page(self):
        scraper = self.make_scraper(site(api_pages={1: api_ok(list(range(1, 11)))}), results_wanted=5)

        summary = await scraper.run()

        self.assertEqual(len(self.dataset.items), 5)
        self.assertEqual([api_page_number(url) for url in self.client.api_urls()], [1])
        self.assertEqual(self.client.html_urls(), [])
        self.assertEqual(summary.properties_saved, 5)
        self.assertEqual(summary.methods_used, ["json-api"])
        self.assertEqual(
            self.key_value_store.values[OUTPUT_SUMMARY_KEY]["methodsUsed"],
            ["json-api"],
        )
        self.assertEqual(self.key_value_store.values[OUTPUT_SUMMARY_KEY]["propertiesSaved"], 5)

    async def test_dedup_across_pages(self):
        handler = site(api_pages={1: api_ok([1, 2, 3]), 2: api_ok([3, 4])})
        scraper = self.make_scraper(handler, use_html_fallback=False)

        await scraper.run()

        self.assertEqual(sorted(self.saved_ids()), ["1", "2", "3", "4"])
        self.assertEqual(scraper.stats.api_pages, 2)

    async def test_details_take_precedence(self):
        handler = site(api_pages={1: api_ok([1])}, detail=lambda url: ok(make_detail_page(price=450000)))
        scraper = self.make_scraper(handler, collect_details=True, use_html_fallback=False)

        await scraper.run()

        item = self.dataset.items[0]
        self.assertEqual(item.price, "$450,000")
        self.assertEqual(item.description, "Bright corner unit")
        self.assertEqual(item.yearBuilt, 1925)
        self.assertEqual(item.city, "Chicago")
        self.assertEqual(item.source, "json-api")
        self.assertEqual(scraper.stats.detail_fetches, 1)

    async def test_failed_detail_keeps_summary(self):
        handler = site(api_pages={1: api_ok([1])}, detail=lambda url: status(500))
        scraper = self.make_scraper(handler, collect_details=True, use_html_fallback=False)

        await scraper.run()

        self.assertEqual(self.saved_ids(), ["1"])
        self.assertEqual(self.dataset.items[0].price, "$400,000")
        self.assertGreaterEqual(scraper.stats.errors, 1)

    async def test_sink_failure_releases_quota(self):
        self.dataset = FakeDatasetSink(fail_for=["1"])
        scraper = self.make_scraper(
            site(api_pages={1: api_ok([1, 2, 3])}),
            results_wanted=2,
            max_concurrency=1,
        )

        await scraper.run()

        self.assertEqual(self.saved_ids(), ["2", "3"])
        self.assertEqual(scraper.stats.errors, 1)


class TestOrchestrator_Fallback(TestOrchestrator_Base):
    async def test_empty_api_page_moves_to_html(self):
        handler = site(api_pages={1: ok(make_api_body([]))}, html_pages={1: html_ok([11, 12])})
        scraper = self.make_scraper(handler)

        summary = await scraper.run()

        self.assertEqual(len(self.client.api_urls()), 1)
        self.assertEqual(sorted(self.saved_ids()), ["11", "12"])
        self.assertEqual(summary.methods_used, ["html"])
        self.assertEqual({item.source for item in self.dataset.items}, {"html"})
        self.assertEqual(scraper.stats.html_pages, 1)

    async def test_blocked_api_moves_to_html(self):
        handler = site(api_pages={1: status(403)}, html_pages={1: html_ok([11])})
        scraper = self.make_scraper(handler)

        await scraper.run()

        # The retry budget is spent, then the method is abandoned
        self.assertEqual(len(self.client.api_urls()), NO_DELAY_POLICY.max_retries + 1)
        self.assertEqual(self.saved_ids(), ["11"])

    async def test_methods_used_in_order(self):
        handler = site(api_pages={1: api_ok([1, 2]), 2: status(429)}, html_pages={1: html_ok([2, 11])})
        scraper = self.make_scraper(handler)

        summary = await scraper.run()

        self.assertEqual(summary.methods_used, ["json-api", "html"])
        self.assertEqual(sorted(self.saved_ids()), ["1", "11", "2"])

    async def test_same_home_from_api_and_html_saved_once(self):
        handler = site(api_pages={1: api_ok([1])}, html_pages={1: ok(json_ld_page([1, 2]))})
        scraper = self.make_scraper(handler, results_wanted=5, max_pages=1)

        summary = await scraper.run()

        urls = [item.url for item in self.dataset.items]
        self.assertEqual(sorted(self.saved_ids()), ["1", "2"])
        self.assertEqual(len(urls), len(set(urls)))
        self.assertEqual(summary.properties_saved, 2)
        self.assertEqual(summary.methods_used, ["json-api", "html"])

    async def test_html_pagination(self):
        handler = site(api_pages={1: status(503)}, html_pages={1: html_ok([11]), 2: html_ok([12])})
        scraper = self.make_scraper(handler)

        await scraper.run()

        self.assertEqual(sorted(self.saved_ids()), ["11", "12"])
        self.assertIn(f"{CHICAGO_URL}?page=2", self.client.html_urls())
        self.assertIn(f"{CHICAGO_URL}?page=3", self.client.html_urls())

    async def test_browser_fallback(self):
        handler = site(api_pages={1: status(403)}, html_pages={1: status(403)})
        launcher = FakeBrowserLauncher(make_search_page([make_card(21), make_card(22)]))
        scraper = self.make_scraper(handler, launcher=launcher, use_playwright=True)

        summary = await scraper.run()

        self.assertEqual(sorted(self.saved_ids()), ["21", "22"])
        self.assertEqual(summary.methods_used, ["playwright"])
        self.assertEqual(scraper.stats.browser_pages, 1)

    async def test_prefer_json_disabled(self):
        handler = site(api_pages={1: api_ok([1])}, html_pages={1: html_ok([11])})
        scraper = self.make_scraper(handler, prefer_json=False)

        await scraper.run()

        self.assertEqual(self.client.api_urls(), [])
        self.assertEqual(self.saved_ids(), ["11"])


class TestOrchestrator_Failures(TestOrchestrator_Base):
    async def test_zero_results_is_fatal(self):
        handler = site(api_pages={1: status(403)}, html_pages={1: status(403)})
        scraper = self.make_scraper(handler)

        with self.assertRaises(FatalScrapeError) as context:
            await scraper.run()

        self.assertIs(context.exception.error_code, ScrapeErrorCode.FatalNoResults)
        self.assertEqual(self.key_value_store.values, {})
        self.assertEqual(self.dataset.items, [])

    async def test_unresolvable_region_is_fatal(self):
        scraper = self.make_scraper(site(), start_urls=["https://www.redfin.com/WA/Seattle"])

        with self.assertRaises(FatalScrapeError) as context:
            await scraper.run()

        self.assertIs(context.exception.error_code, ScrapeErrorCode.FatalNoRegion)
        self.assertEqual(self.client.requested_urls, [])

    async def test_unresolvable_target_is_skipped(self):
        handler = site(api_pages={1: api_ok([1])})
        scraper = self.make_scraper(
            handler,
            start_urls=["https://www.redfin.com/WA/Seattle", CHICAGO_URL],
            use_html_fallback=False,
        )

        summary = await scraper.run()

        self.assertEqual(summary.properties_saved, 1)

    async def test_run_time_budget(self):
        ticks = itertools.count(0, 1000)
        scraper = self.make_scraper(site(api_pages={1: api_ok([1])}), clock=lambda: next(ticks))

        with self.assertRaises(FatalScrapeError):
            await scraper.run()

        self.assertEqual(self.client.requested_urls, [])


    async def test_deadline_reached_mid_run(self):
        self.now = 0
        pages = site(api_pages={1: api_ok([1, 2, 3]), 2: api_ok([4])}, html_pages={1: html_ok([11])})

        def handler(url):
            if is_api_url(url) and api_page_number(url) == 1:
                self.now = 1000
            return pages(url)

        scraper = self.make_scraper(handler, clock=lambda: self.now, max_run_time_secs=900)

        summary = await scraper.run()

        self.assertEqual(sorted(self.saved_ids()), ["1", "2", "3"])
        self.assertEqual([api_page_number(url) for url in self.client.api_urls()], [1])
        self.assertEqual(self.client.html_urls(), [])
        self.assertEqual(summary.properties_saved, 3)
        self.assertIn(OUTPUT_SUMMARY_KEY, self.key_value_store.values)

class TestOrchestrator_Helpers(unittest.TestCase):
    def test_html_page_url(self):
        self.assertEqual(html_page_url(CHICAGO_URL, 1), CHICAGO_URL)
        self.assertEqual(html_page_url(CHICAGO_URL, 2), f"{CHICAGO_URL}?page=2")
        self.assertEqual(html_page_url(f"{CHICAGO_URL}?sort=price", 3), f"{CHICAGO_URL}?sort=price&page=3")

    def test_state_order(self):
        self.assertEqual(
            [state.value for state in ScrapeState],
            ["TryApi", "TryHtml", "TryBrowser", "Done"],
        )


if __name__ == "__main__":
    unittest.main()
