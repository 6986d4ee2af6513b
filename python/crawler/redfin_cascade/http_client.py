import asyncio
import random
from typing import Any, List, Mapping

import requests

from .errors import InvalidInputError, TransientFetchError
from .interfaces import HttpResponse


class RequestsHttpClient:
    """
    Network fetch primitive backed by requests.

    Each call runs in a worker thread so the event loop keeps serving the
    other in-flight fetches.
    """

    def __init__(self, session: requests.Session | None = None):
        self._session = session

    def _get(self, url: str, headers: Mapping[str, str], proxy_url: str | None, timeout_secs: float) -> HttpResponse:
        proxies = {"http": proxy_url, "https": proxy_url} if proxy_url else None
        getter = self._session.get if self._session is not None else requests.get
        try:
            response = getter(
                url,
                headers=dict(headers),
                proxies=proxies,
                timeout=timeout_secs,
                allow_redirects=True,
            )
        except requests.Timeout as error:
            raise TransientFetchError(f"Timeout after {timeout_secs}s: {error}", url=url) from error
        except requests.RequestException as error:
            raise TransientFetchError(f"Request failed: {error}", url=url) from error
        return HttpResponse(status_code=response.status_code, text=response.text or "", url=response.url)

    async def fetch(
            self,
            url: str,
            headers: Mapping[str, str],
            proxy_url: str | None,
            timeout_secs: float,
            ) -> HttpResponse:
        return await asyncio.to_thread(self._get, url, headers, proxy_url, timeout_secs)


class StaticProxyProvisioner:
    """Hands out one of a fixed list of proxy URLs per request, no stickiness."""

    def __init__(self, proxy_urls: List[str]):
        if not proxy_urls:
            raise InvalidInputError("StaticProxyProvisioner needs at least one proxy URL")
        self._proxy_urls = list(proxy_urls)

    async def new_url(self) -> str | None:
        return random.choice(self._proxy_urls)


def create_proxy_provisioner(configuration: Any) -> StaticProxyProvisioner | None:
    """
    Build the provisioner for the run input's proxyConfiguration.

    Accepts {"proxyUrls": [...]}, a list of URLs or a single URL string.
    A missing or disabled configuration means direct connections.
    """
    if not configuration:
        return None
    if isinstance(configuration, str):
        return StaticProxyProvisioner([configuration])
    if isinstance(configuration, list):
        urls = [url for url in configuration if isinstance(url, str) and url]
        return StaticProxyProvisioner(urls) if urls else None
    if isinstance(configuration, dict):
        if configuration.get("useProxy") is False:
            return None
        urls = configuration.get("proxyUrls") or []
        if not isinstance(urls, list):
            raise InvalidInputError("proxyConfiguration.proxyUrls must be a list", configuration)
        urls = [url for url in urls if isinstance(url, str) and url]
        return StaticProxyProvisioner(urls) if urls else None
    raise InvalidInputError(f"Unsupported proxyConfiguration: {configuration!r}", configuration)
