# Fakes of the host collaborators and page builders shared by the tests
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping
from urllib.parse import parse_qs, urlsplit

import shared.logger_factory as logger_factory

from crawler.redfin_cascade.interfaces import HttpResponse
from crawler.redfin_cascade.retry import RetryPolicy

CHICAGO_URL = "https://www.redfin.com/city/29470/IL/Chicago"

# No waiting between retries
NO_DELAY_POLICY = RetryPolicy(max_retries=2, base_delay_ms=0, jitter_min_ms=0, jitter_max_ms=0)


def configure_test_logger() -> None:
    logger_factory.configure_logger(enable_file_logging=False, enable_console_logging=False)


def is_api_url(url: str) -> bool:
    return "/stingray/api/gis" in url


def api_page_number(url: str) -> int:
    return int(parse_qs(urlsplit(url).query)["page_number"][0])


def html_page_number(url: str) -> int:
    values = parse_qs(urlsplit(url).query).get("page")
    return int(values[0]) if values else 1


def make_api_home(home_id: int, price: Any = 400000, **extra: Any) -> Dict[str, Any]:
    home: Dict[str, Any] = {
        "propertyId": home_id,
        "url": f"/IL/Chicago/{home_id}-Main-St-60614/home/{home_id}",
        "streetLine": {"value": f"{home_id} Main St"},
        "city": "Chicago",
        "state": "IL",
        "zip": "60614",
        "price": {"value": price},
        "beds": 3,
        "baths": 2,
        "sqFt": {"value": 1850},
        "mlsStatus": "Active",
        "latLong": {"value": {"latitude": 41.92, "longitude": -87.65}},
    }
    home.update(extra)
    return home


def make_api_body(homes: List[Dict[str, Any]]) -> str:
    return "{}&&" + json.dumps({"version": 8, "payload": {"homes": homes}})


def make_card(home_id: int, price: str = "$410,000") -> str:
    return f"""
    <div class="HomeCardContainer" data-property-id="{home_id}">
      <a href="/IL/Chicago/{home_id}-Oak-Ave-60614/home/{home_id}">link</a>
      <span data-rf-test-id="abp-price">{price}</span>
      <div data-rf-test-id="abp-streetLine">{home_id} Oak Ave</div>
      <div data-rf-test-id="abp-cityStateZip">Chicago, IL 60614</div>
      <div data-rf-test-id="abp-beds">2 beds</div>
      <div data-rf-test-id="abp-baths">1.5 baths</div>
      <div data-rf-test-id="abp-sqft">1,200 Sq. Ft.</div>
    </div>
    """


def make_search_page(cards: List[str]) -> str:
    return f"<html><head><title>Chicago homes</title></head><body>{''.join(cards)}</body></html>"


def make_detail_page(price: int | str = 450000, description: str = "Bright corner unit") -> str:
    json_ld = {
        "@context": "https://schema.org",
        "@type": ["SingleFamilyResidence", "Product"],
        "name": "1 Main St, Chicago, IL 60614",
        "offers": {"@type": "Offer", "price": price, "priceCurrency": "USD"},
        "description": description,
        "yearBuilt": 1925,
    }
    return f"""
    <html><head>
      <script type="application/ld+json">{json.dumps(json_ld)}</script>
    </head><body><h1>1 Main St</h1></body></html>
    """


class FakeHttpClient:
    """HttpClient answering every URL through handler(url)."""

    def __init__(self, handler: Callable[[str], HttpResponse | Exception]):
        self.handler = handler
        self.requested_urls: List[str] = []
        self.proxy_urls: List[str | None] = []

    async def fetch(
            self,
            url: str,
            headers: Mapping[str, str],
            proxy_url: str | None,
            timeout_secs: float,
            ) -> HttpResponse:
        self.requested_urls.append(url)
        self.proxy_urls.append(proxy_url)
        outcome = self.handler(url)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def api_urls(self) -> List[str]:
        return [url for url in self.requested_urls if is_api_url(url)]

    def html_urls(self) -> List[str]:
        return [url for url in self.requested_urls if not is_api_url(url)]


def ok(text: str) -> HttpResponse:
    return HttpResponse(status_code=200, text=text)


def status(code: int, text: str = "") -> HttpResponse:
    return HttpResponse(status_code=code, text=text)


class FakeDatasetSink:
    def __init__(self, fail_for: List[str] | None = None):
        self.items: List[Any] = []
        self.fail_for = fail_for or []

    async def push_data(self, record: Any) -> None:
        if record.propertyId in self.fail_for:
            raise IOError(f"cannot store {record.propertyId}")
        self.items.append(record)


class FakeKeyValueStore:
    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}

    async def set_value(self, key: str, value: Dict[str, Any]) -> None:
        self.values[key] = value


class FakeProxyProvisioner:
    def __init__(self) -> None:
        self.issued = 0

    async def new_url(self) -> str | None:
        self.issued += 1
        return f"http://proxy-{self.issued}.example:8000"


class FakePage:
    def __init__(self, browser: "FakeBrowser"):
        self._browser = browser
        self.closed = False

    async def goto(self, url: str, **kwargs: Any) -> None:
        self._browser.visited.append(url)

    async def wait_for_timeout(self, timeout: float) -> None:
        self._browser.waited.append(timeout)

    async def content(self) -> str:
        return self._browser.html

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, browser: "FakeBrowser", options: Dict[str, Any]):
        self._browser = browser
        self.options = options
        self.init_scripts: List[str] = []
        self.pages: List[FakePage] = []
        self.closed = False

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def new_page(self) -> FakePage:
        page = FakePage(self._browser)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, html: str):
        self.html = html
        self.visited: List[str] = []
        self.waited: List[float] = []
        self.contexts: List[FakeContext] = []

    async def new_context(self, **options: Any) -> FakeContext:
        context = FakeContext(self, options)
        self.contexts.append(context)
        return context


class FakeBrowserLauncher:
    """Hands out a new FakeBrowser rendering html on every launch."""

    def __init__(self, html: str):
        self.html = html
        self.browsers: List[FakeBrowser] = []
        self.proxy_urls: List[str | None] = []
        self.closed = 0

    @asynccontextmanager
    async def launch(self, proxy_url: str | None) -> AsyncIterator[FakeBrowser]:
        self.proxy_urls.append(proxy_url)
        browser = FakeBrowser(self.html)
        self.browsers.append(browser)
        try:
            yield browser
        finally:
            self.closed += 1
