"""
Contracts of the collaborators the scraper is driven through.

The host supplies the network fetch primitive, the browser launcher, the proxy
provisioner, the dataset sink and the key-value store. Default local
implementations live in http_client.py, browser.py and pipelines.py.
"""

from dataclasses import dataclass
from typing import Any, AsyncContextManager, Dict, Mapping, Protocol


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    text: str
    url: str | None = None


class HttpClient(Protocol):
    async def fetch(
            self,
            url: str,
            headers: Mapping[str, str],
            proxy_url: str | None,
            timeout_secs: float,
            ) -> HttpResponse:
        """Return status and body; never raise on non-2xx. Network failures raise TransientFetchError."""
        ...


class BrowserPage(Protocol):
    async def goto(self, url: str, **kwargs: Any) -> Any: ...
    async def wait_for_timeout(self, timeout: float) -> None: ...
    async def content(self) -> str: ...
    async def close(self) -> None: ...


class BrowserContext(Protocol):
    async def add_init_script(self, script: str) -> None: ...
    async def new_page(self) -> BrowserPage: ...
    async def close(self) -> None: ...


class Browser(Protocol):
    async def new_context(self, **kwargs: Any) -> BrowserContext: ...
    async def close(self) -> None: ...


class BrowserLauncher(Protocol):
    def launch(self, proxy_url: str | None) -> AsyncContextManager[Browser]:
        """Start an isolated browser process, stopped when the context exits."""
        ...


class ProxyProvisioner(Protocol):
    async def new_url(self) -> str | None: ...


class DatasetSink(Protocol):
    async def push_data(self, record: Any) -> None: ...


class KeyValueStore(Protocol):
    async def set_value(self, key: str, value: Dict[str, Any]) -> None: ...
