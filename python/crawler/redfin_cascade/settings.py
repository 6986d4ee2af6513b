# Run input of the Redfin cascade scraper
import json
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping

from .config import DEFAULT_TIMEOUT_MS
from .errors import InvalidInputError
from .retry import RetryPolicy

DEFAULT_RESULTS_WANTED = 50
DEFAULT_MAX_PAGES = 3
DEFAULT_MAX_CONCURRENCY = 3
MAX_CONCURRENCY_LIMIT = 10
DEFAULT_PAGE_SIZE = 200
DEFAULT_MAX_RETRIES = 2
DEFAULT_DELAY_MIN_MS = 350
DEFAULT_DELAY_MAX_MS = 1200
DEFAULT_MAX_RUN_TIME_SECS = 900


def _to_int(value: Any, default: int) -> int:
    """Lenient number parsing: anything non-numeric falls back to default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return int(number)


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _first_key(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


@dataclass(frozen=True)
class ScrapeInput:
    start_urls: List[str] = field(default_factory=list)
    region_id: str | None = None
    region_type: str | int | None = None
    results_wanted: int = DEFAULT_RESULTS_WANTED
    max_pages: int = DEFAULT_MAX_PAGES
    collect_details: bool = True
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    prefer_json: bool = True
    use_html_fallback: bool = True
    use_playwright: bool = False
    page_size: int = DEFAULT_PAGE_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_on_block: bool = True
    request_timeout_ms: int = DEFAULT_TIMEOUT_MS
    delay_min_ms: int = DEFAULT_DELAY_MIN_MS
    delay_max_ms: int = DEFAULT_DELAY_MAX_MS
    max_run_time_secs: int = DEFAULT_MAX_RUN_TIME_SECS
    proxy_configuration: Any = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ScrapeInput":
        """
        Build the run input from its JSON form, applying defaults and clamps.

        Keys follow the actor input names (camelCase); results_wanted and
        max_pages are accepted as aliases.
        """
        if not isinstance(raw, Mapping):
            raise InvalidInputError(f"Run input must be a JSON object, got {type(raw).__name__}")

        start_urls: List[str] = []
        candidates: List[Any] = []
        if raw.get("startUrl"):
            candidates.append(raw["startUrl"])
        extra = raw.get("startUrls") or []
        if not isinstance(extra, list):
            raise InvalidInputError("startUrls must be a list", extra)
        candidates.extend(extra)
        for candidate in candidates:
            # Request-list style entries: {"url": "..."}
            url = candidate.get("url") if isinstance(candidate, dict) else candidate
            if isinstance(url, str) and url.strip() and url.strip() not in start_urls:
                start_urls.append(url.strip())

        region_id = raw.get("regionId")

        return cls(
            start_urls=start_urls,
            region_id=str(region_id) if region_id not in (None, "") else None,
            region_type=raw.get("regionType") or None,
            results_wanted=_to_int(_first_key(raw, "resultsWanted", "results_wanted"), DEFAULT_RESULTS_WANTED),
            max_pages=_to_int(_first_key(raw, "maxPages", "max_pages"), DEFAULT_MAX_PAGES),
            collect_details=_to_bool(raw.get("collectDetails"), True),
            max_concurrency=_to_int(raw.get("maxConcurrency"), DEFAULT_MAX_CONCURRENCY),
            prefer_json=_to_bool(raw.get("preferJson"), True),
            use_html_fallback=_to_bool(raw.get("useHtmlFallback"), True),
            use_playwright=_to_bool(raw.get("usePlaywright"), False),
            page_size=_to_int(raw.get("pageSize"), DEFAULT_PAGE_SIZE),
            max_retries=_to_int(raw.get("maxRetries"), DEFAULT_MAX_RETRIES),
            retry_on_block=_to_bool(raw.get("retryOnBlock"), True),
            request_timeout_ms=_to_int(raw.get("requestTimeoutMs"), DEFAULT_TIMEOUT_MS),
            delay_min_ms=_to_int(raw.get("delayMinMs"), DEFAULT_DELAY_MIN_MS),
            delay_max_ms=_to_int(raw.get("delayMaxMs"), DEFAULT_DELAY_MAX_MS),
            max_run_time_secs=_to_int(raw.get("maxRunTimeSecs"), DEFAULT_MAX_RUN_TIME_SECS),
            proxy_configuration=raw.get("proxyConfiguration"),
        ).clamped()

    def clamped(self) -> "ScrapeInput":
        """Copy with every numeric field brought into its valid range."""
        delay_min, delay_max = max(0, self.delay_min_ms), max(0, self.delay_max_ms)
        if delay_max < delay_min:
            delay_min, delay_max = delay_max, delay_min
        return replace(
            self,
            results_wanted=max(1, self.results_wanted),
            max_pages=max(1, self.max_pages),
            max_concurrency=min(MAX_CONCURRENCY_LIMIT, max(1, self.max_concurrency)),
            page_size=max(1, self.page_size),
            max_retries=max(0, self.max_retries),
            request_timeout_ms=max(1, self.request_timeout_ms),
            delay_min_ms=delay_min,
            delay_max_ms=delay_max,
            max_run_time_secs=max(1, self.max_run_time_secs),
        )

    def with_overrides(self, **overrides: Any) -> "ScrapeInput":
        """Copy with the given fields replaced, None values ignored, then clamped."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None}).clamped()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, retry_blocked=self.retry_on_block)


def load_input(path: str | Path) -> ScrapeInput:
    """Read the run input from a JSON file."""
    input_path = Path(path)
    try:
        with open(input_path, 'r', encoding='utf-8') as f:
            raw: Dict[str, Any] = json.load(f)
    except FileNotFoundError as error:
        raise InvalidInputError(f"Input file not found: {input_path}") from error
    except json.JSONDecodeError as error:
        raise InvalidInputError(f"Input file is not valid JSON: {input_path}: {error}") from error
    return ScrapeInput.from_dict(raw)
