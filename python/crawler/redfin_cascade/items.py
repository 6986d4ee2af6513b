# Data model for scraped Redfin items
import re
from dataclasses import dataclass, fields
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any, List, Set
from urllib.parse import urlsplit

from .config import DEFAULT_REGION_TYPE, REGION_TYPE_CODES


class PropertySource(Enum):
    """Acquisition method that produced a record."""
    JsonApi = "json-api"
    Html = "html"
    Playwright = "playwright"


_REGION_PATH = re.compile(
    r"/(?P<kind>city|zipcode|neighborhood|county|state)/(?P<id>\d+)(?:/|$)",
    re.IGNORECASE,
)


def region_type_code(value: str | int | None) -> int | None:
    """Accept a region type name ("county") or numeric code and return the code."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text.isdigit():
        return int(text)
    return REGION_TYPE_CODES.get(text)


@dataclass(frozen=True)
class RegionTarget:
    region_id: str
    region_type: int
    url: str
    market: str

    @classmethod
    def from_url(
            cls,
            url: str | None,
            region_id: str | int | None = None,
            region_type: str | int | None = None,
            ) -> "RegionTarget | None":
        """
        Resolve the search scope of a Redfin search page.

        Args:
            url: Search page URL (e.g. "https://www.redfin.com/city/29470/IL/Chicago")
            region_id: Explicit region id, wins over the one in the URL
            region_type: Explicit region type name or code, wins over the URL

        Returns:
            RegionTarget, or None when the URL is unusable or no region id is known
        """
        if not url:
            return None
        parts = urlsplit(url.strip())
        if not parts.scheme or not parts.netloc:
            return None

        match = _REGION_PATH.search(parts.path)
        resolved_id = str(region_id) if region_id not in (None, "") else (match.group("id") if match else None)
        if not resolved_id:
            return None

        resolved_type = region_type_code(region_type)
        if resolved_type is None:
            kind = match.group("kind").lower() if match else DEFAULT_REGION_TYPE
            resolved_type = REGION_TYPE_CODES[kind]

        segments = [segment for segment in parts.path.split("/") if segment]
        slug = segments[-1] if segments else ""
        market = re.sub(r"[^a-z0-9]+", "-", slug.lower()) or "market"

        return cls(
            region_id=resolved_id,
            region_type=resolved_type,
            url=url.strip(),
            market=market,
        )


@dataclass
class PartialRecord:
    """
    Listing summary or detail record recovered by one extractor.

    Every field is optional, absence is expected.
    """
    property_id: Any = None
    url: str | None = None
    title: str | None = None
    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    price: Any = None
    beds: Any = None
    baths: Any = None
    sqft: Any = None
    lot_size: Any = None
    year_built: Any = None
    hoa: Any = None
    property_type: Any = None
    status: Any = None
    listing_date: Any = None
    description: str | None = None
    latitude: Any = None
    longitude: Any = None
    mls_number: Any = None

    @property
    def identity(self) -> str | None:
        """Dedup key: native id, else URL."""
        if self.property_id not in (None, ""):
            return str(self.property_id)
        return self.url or None

    def is_empty(self) -> bool:
        return all(getattr(self, field.name) in (None, "") for field in fields(self))

    def fill_missing(self, other: "PartialRecord") -> "PartialRecord":
        """Return a copy where empty fields take the value from other."""
        merged = {}
        for field in fields(self):
            value = getattr(self, field.name)
            merged[field.name] = value if value not in (None, "") else getattr(other, field.name)
        return PartialRecord(**merged)


@dataclass(frozen=True)
class RedfinPropertyItem:
    """Canonical property record pushed to the dataset sink."""
    propertyId: str
    url: str | None
    address: str | None
    streetAddress: str | None
    city: str | None
    state: str | None
    zip: str | None
    price: str | None
    beds: int | float | None
    baths: int | float | None
    sqft: int | float | None
    propertyType: Any
    status: Any
    listingDate: Any
    description: str | None
    latitude: Any
    longitude: Any
    mlsNumber: Any
    lotSize: Any
    yearBuilt: int | float | None
    hoa: Any
    source: str
    fetched_at: str


@dataclass
class RunStats:
    """Counters of one scrape run, owned by the orchestrator."""
    api_pages: int = 0
    html_pages: int = 0
    browser_pages: int = 0
    api_calls: int = 0
    detail_fetches: int = 0
    errors: int = 0
    properties_saved: int = 0
    # Quota slots held by in-flight listings
    reserved: int = 0
    methods_used: List[str] = dataclass_field(default_factory=list)

    def record_saved(self, source: PropertySource) -> None:
        self.properties_saved += 1
        if source.value not in self.methods_used:
            self.methods_used.append(source.value)


class DedupSet:
    """Identities seen during one run."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def claim(self, identity: str) -> bool:
        """Check-and-insert in one step; False when the identity was already claimed."""
        if identity in self._seen:
            return False
        self._seen.add(identity)
        return True

    def __contains__(self, identity: object) -> bool:
        return identity in self._seen

    def __len__(self) -> int:
        return len(self._seen)
