"""
Redfin page parser module.

This module contains the extractors that recover listing summaries and
detail records from the raw payloads the fetchers return:

- linked data (JSON-LD) script blocks
- framework state blobs assigned to window variables in inline scripts
- DOM selectors on rendered cards and detail pages
- the gis search API JSON payload

Every extractor is a pure function of its input. Malformed or unexpected
input yields fewer fields, never an exception.
"""

import json
import re
from enum import Enum
from typing import Any, Dict, Iterator, List, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from .config import (
    CARD_BATHS_SELECTOR,
    CARD_BEDS_SELECTOR,
    CARD_CITY_STATE_ZIP_SELECTOR,
    CARD_PRICE_SELECTOR,
    CARD_SELECTOR,
    CARD_SQFT_SELECTOR,
    CARD_STREET_SELECTOR,
    DETAIL_META_TAGS,
    DETAIL_SELECTORS,
    FULL_ADDRESS_SELECTOR,
    KEY_DETAIL_LABELS,
    RESIDENTIAL_LD_TYPES,
)
from .items import PartialRecord
from .text_utils import (
    clean_text,
    ensure_absolute_url,
    extract_home_id,
    split_address,
    split_city_state_zip,
    strip_markup,
)


class StateDecoding(Enum):
    """How the captured state blob has to be decoded before json.loads."""
    JsonLiteral = "JsonLiteral"
    EscapedJsonString = "EscapedJsonString"


StatePattern = Tuple[re.Pattern[str], StateDecoding]


def _literal_assignment(variable: str) -> StatePattern:
    return (
        re.compile(rf"window\.{variable}\s*=\s*(?P<json>\{{[\s\S]*?\}})\s*;?\s*</script>"),
        StateDecoding.JsonLiteral,
    )


# Ordered by priority, first decodable match wins
LIST_STATE_PATTERNS: List[StatePattern] = [
    (re.compile(r"window\.__REDWOOD__\s*=\s*JSON\.parse\('(?P<json>[^']+)'", re.S), StateDecoding.EscapedJsonString),
    _literal_assignment("__REDWOOD__"),
    _literal_assignment("__PRELOADED_STATE__"),
]
DETAIL_STATE_PATTERNS: List[StatePattern] = LIST_STATE_PATTERNS + [
    _literal_assignment("__INITIAL_STATE__"),
    _literal_assignment("__REDFIN_STATE__"),
]

# Where a single home lives inside the known detail state shapes
_DETAIL_HOME_PATHS: List[Tuple[str, ...]] = [
    ("homeInfo",),
    ("propertyDetailsInfo", "propertyInfo"),
    ("propertyInfo",),
    ("property",),
    ("payload", "homeDetail"),
    ("payload", "propertyInfo"),
    ("initialState", "homeInfo"),
]
_HOME_LIST_PATHS: List[Tuple[str, ...]] = [
    ("payload", "homes"),
    ("homes",),
    ("properties",),
]


"""
Helpers
"""

def _safe_json_loads(text: str | None) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except (ValueError, TypeError):
        return None


def _unwrap(value: Any) -> Any:
    # The site wraps many scalars as {"value": x, "level": n}
    while isinstance(value, dict) and "value" in value:
        value = value["value"]
    return value


def _dig(obj: Any, *keys: str) -> Any:
    for key in keys:
        if isinstance(obj, dict) and key not in obj and isinstance(obj.get("value"), dict):
            obj = obj["value"]
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _first(*values: Any) -> Any:
    """First present scalar, after unwrapping value wrappers."""
    for value in values:
        value = _unwrap(value)
        if value is None or value == "" or isinstance(value, (dict, list)):
            continue
        return value
    return None


def _first_text(*values: Any) -> str | None:
    value = _first(*values)
    return clean_text(value) if value is not None else None


def _select_text(node: BeautifulSoup | Tag, selector: str) -> str | None:
    element = node.select_one(selector)
    if element is None:
        return None
    return clean_text(element.get_text(" "))


def _meta_content(soup: BeautifulSoup, name: str) -> str | None:
    meta_tag = soup.find("meta", attrs={"name": name})
    if isinstance(meta_tag, Tag):
        content = meta_tag.get("content")
        if isinstance(content, str):
            return clean_text(content)
    return None


def _merge_by_identity(records: Sequence[PartialRecord]) -> List[PartialRecord]:
    """Fold records describing the same home together, keeping first-seen order."""
    merged: Dict[str, PartialRecord] = {}
    anonymous: List[PartialRecord] = []
    for record in records:
        key = record.url or record.identity
        if key is None:
            anonymous.append(record)
        elif key in merged:
            merged[key] = merged[key].fill_missing(record)
        else:
            merged[key] = record
    return list(merged.values()) + anonymous


"""
Source shape conversions, one per variant
"""

def _record_from_home(home: Dict[str, Any]) -> PartialRecord:
    """Home entry of the gis API or of an embedded search state."""
    url = ensure_absolute_url(_first(home.get("url")))
    return PartialRecord(
        property_id=_first(home.get("propertyId"), home.get("id"), extract_home_id(url), home.get("mlsId")),
        url=url,
        street_address=_first_text(home.get("streetLine"), home.get("address")),
        city=_first_text(home.get("city")),
        state=_first_text(home.get("state")),
        zip=_first_text(home.get("zip"), home.get("postalCode")),
        price=_first(_dig(home, "priceInfo", "amount"), home.get("price")),
        beds=_first(home.get("beds")),
        baths=_first(home.get("baths")),
        sqft=_first(home.get("sqFt"), home.get("sqft")),
        lot_size=_first(_dig(home, "lotSize", "amount"), home.get("lotSize")),
        year_built=_first(home.get("yearBuilt")),
        hoa=_first(home.get("hoa")),
        property_type=_first(home.get("propertyType")),
        status=_first(home.get("mlsStatus"), home.get("status")),
        listing_date=_first(home.get("listingDate")),
        latitude=_first(_dig(home, "latLong", "latitude"), home.get("lat")),
        longitude=_first(_dig(home, "latLong", "longitude"), home.get("lng")),
        mls_number=_first(home.get("mlsNumber"), home.get("mlsId")),
    )


def _record_from_home_detail(home: Dict[str, Any]) -> PartialRecord:
    """Single home object of an embedded detail page state."""
    return PartialRecord(
        property_id=_first(home.get("id"), home.get("propertyId")),
        url=ensure_absolute_url(_first(home.get("url"))),
        title=_first_text(home.get("name"), home.get("shortAddress"), home.get("formattedAddress")),
        price=_first(home.get("price"), home.get("latestPrice"), _dig(home, "priceInfo", "amount")),
        beds=_first(home.get("beds"), home.get("bedrooms")),
        baths=_first(home.get("baths"), home.get("bathrooms")),
        sqft=_first(home.get("sqFt"), home.get("sqft"), home.get("squareFeet")),
        street_address=_first_text(
            home.get("streetLine"),
            home.get("streetAddress"),
            _dig(home, "address", "streetAddress"),
        ),
        city=_first_text(home.get("city"), _dig(home, "address", "city")),
        state=_first_text(home.get("state"), _dig(home, "address", "state")),
        zip=_first_text(home.get("zip"), _dig(home, "address", "zip")),
        description=strip_markup(_first(home.get("description"), home.get("publicRemarks"), home.get("remarks"))),
        latitude=_first(home.get("latitude"), _dig(home, "latLong", "latitude"), home.get("lat")),
        longitude=_first(home.get("longitude"), _dig(home, "latLong", "longitude"), home.get("lng")),
        lot_size=_first(home.get("lotSize"), home.get("lotSizeSqFt"), home.get("lotSizeInSqFt")),
        year_built=_first(home.get("yearBuilt")),
        hoa=_first(home.get("hoa"), home.get("hoaFee"), home.get("hoaDues")),
        status=_first(home.get("status"), home.get("mlsStatus"), home.get("propertyStatus")),
        listing_date=_first(home.get("listingDate"), home.get("listedOnDate"), home.get("listDate")),
        mls_number=_first(home.get("mlsId"), home.get("mlsNumber")),
        property_type=_first(home.get("propertyType")),
    )


def _record_from_json_ld(item: Dict[str, Any]) -> PartialRecord:
    """schema.org residence or product object."""
    offers = item.get("offers")
    if isinstance(offers, list):
        offers = next((offer for offer in offers if isinstance(offer, dict)), None)

    address = item.get("address")
    street = _dig(address, "streetAddress") if isinstance(address, dict) else address

    url = ensure_absolute_url(_first(item.get("url")))

    return PartialRecord(
        property_id=extract_home_id(url),
        url=url,
        title=_first_text(item.get("name")),
        price=_first(_dig(offers, "price")),
        street_address=_first_text(street),
        city=_first_text(_dig(address, "addressLocality")),
        state=_first_text(_dig(address, "addressRegion")),
        zip=_first_text(_dig(address, "postalCode")),
        beds=_first(item.get("numberOfBedrooms"), item.get("numberOfRooms")),
        baths=_first(item.get("numberOfBathroomsTotal"), item.get("numberOfFullBathrooms")),
        sqft=_first(item.get("floorSize")),
        year_built=_first(item.get("yearBuilt")),
        description=strip_markup(_first(item.get("description"))),
        latitude=_first(_dig(item, "geo", "latitude")),
        longitude=_first(_dig(item, "geo", "longitude")),
    )


def _record_from_card(card: Tag) -> PartialRecord | None:
    """Rendered search result card."""
    link = card.find("a", href=True)
    href = link.get("href") if isinstance(link, Tag) else None
    url = ensure_absolute_url(href if isinstance(href, str) else None)

    street = _select_text(card, CARD_STREET_SELECTOR)
    city_state_zip_nodes = card.select(CARD_CITY_STATE_ZIP_SELECTOR)
    city_state_zip = clean_text(city_state_zip_nodes[-1].get_text(" ")) if city_state_zip_nodes else None

    location: Dict[str, str | None] = {"city": None, "state": None, "zip": None}
    if city_state_zip and city_state_zip != street:
        location = split_city_state_zip(city_state_zip)
    elif street and "," in street:
        # One node holds the whole one-line address
        components = split_address(street)
        if components.get("city"):
            street = components.get("street", street)
            location = {key: components.get(key) for key in ("city", "state", "zip")}

    property_id = card.get("data-property-id")
    if not isinstance(property_id, str) or not property_id:
        property_id = extract_home_id(url)

    if not url and not property_id:
        return None

    return PartialRecord(
        property_id=property_id,
        url=url,
        street_address=street,
        city=location["city"],
        state=location["state"],
        zip=location["zip"],
        price=_select_text(card, CARD_PRICE_SELECTOR),
        beds=_select_text(card, CARD_BEDS_SELECTOR),
        baths=_select_text(card, CARD_BATHS_SELECTOR),
        sqft=_select_text(card, CARD_SQFT_SELECTOR),
    )


"""
Linked data
"""

def _json_ld_items(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        parsed = _safe_json_loads(script.get_text().strip())
        if parsed is None:
            continue
        candidates = parsed if isinstance(parsed, list) else [parsed]
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            graph = candidate.get("@graph")
            if isinstance(graph, list):
                items.extend(entry for entry in graph if isinstance(entry, dict))
            else:
                items.append(candidate)
    return items


def extract_json_ld(html: str) -> List[Dict[str, Any]]:
    """Parse every JSON-LD block of the document, flattening arrays and @graph."""
    return _json_ld_items(BeautifulSoup(html, "html.parser"))


def _is_residential(item: Dict[str, Any]) -> bool:
    declared = item.get("@type")
    types = declared if isinstance(declared, list) else [declared]
    return any(isinstance(kind, str) and kind in RESIDENTIAL_LD_TYPES for kind in types)


def parse_property_from_json_ld(items: Sequence[Dict[str, Any]]) -> PartialRecord | None:
    """
    Build a record from the residential JSON-LD objects of a page.

    The first residential object wins; later ones (e.g. the Product holding
    the offer next to the SingleFamilyResidence) only fill its gaps.
    """
    record: PartialRecord | None = None
    for item in items:
        if not _is_residential(item):
            continue
        converted = _record_from_json_ld(item)
        record = converted if record is None else record.fill_missing(converted)
    if record is None or record.is_empty():
        return None
    return record


"""
Embedded state
"""

def decode_state_blob(raw: str, decoding: StateDecoding) -> Any:
    """Decode one captured state blob; None when it is not valid JSON."""
    if decoding is StateDecoding.EscapedJsonString:
        raw = raw.replace('\\"', '"').replace('\\\\', '\\')
    return _safe_json_loads(raw)


def iter_embedded_state(html: str, patterns: Sequence[StatePattern]) -> Iterator[Any]:
    """Yield each decodable state blob, in pattern priority order."""
    for pattern, decoding in patterns:
        match = pattern.search(html)
        if not match or not match.group("json"):
            continue
        parsed = decode_state_blob(match.group("json"), decoding)
        if parsed is not None:
            yield parsed


def parse_embedded_homes(html: str) -> List[PartialRecord]:
    """Home list of the first embedded search state that carries one."""
    for state in iter_embedded_state(html, LIST_STATE_PATTERNS):
        for path in _HOME_LIST_PATHS:
            homes = _dig(state, *path)
            if isinstance(homes, list) and homes:
                return [_record_from_home(home) for home in homes if isinstance(home, dict)]
    return []


def parse_embedded_detail(html: str) -> PartialRecord | None:
    """Home of the first embedded detail state that carries one."""
    for state in iter_embedded_state(html, DETAIL_STATE_PATTERNS):
        for path in _DETAIL_HOME_PATHS:
            home = _dig(state, *path)
            if isinstance(home, dict) and home:
                return _record_from_home_detail(home)
    return None


"""
DOM
"""

def parse_listing_cards(html: str) -> List[PartialRecord]:
    soup = BeautifulSoup(html, "html.parser")
    listings: List[PartialRecord] = []
    for card in soup.select(CARD_SELECTOR):
        record = _record_from_card(card)
        if record is not None:
            listings.append(record)
    return _merge_by_identity(listings)


def _detail_from_dom(soup: BeautifulSoup) -> PartialRecord:
    values: Dict[str, Any] = {}

    for name, field in DETAIL_META_TAGS.items():
        content = _meta_content(soup, name)
        if content:
            values.setdefault(field, content)
    description = _meta_content(soup, "description")
    if description:
        values["description"] = description

    for field, selectors in DETAIL_SELECTORS.items():
        if field in values:
            continue
        for selector in selectors:
            text = _select_text(soup, selector)
            if text:
                values[field] = text
                break

    if "street_address" not in values:
        full_address = _select_text(soup, FULL_ADDRESS_SELECTOR)
        if full_address:
            values["street_address"] = full_address

    for row in soup.select(".keyDetails-row"):
        value_type = row.select_one(".valueType")
        value = row.select_one(".valueText")
        if value_type is None or value is None:
            continue
        label = value_type.get_text()
        text = clean_text(value.get_text(" "))
        if not text or text == "—":
            continue
        for key_label, field in KEY_DETAIL_LABELS.items():
            if key_label in label and field not in values:
                values[field] = text

    return PartialRecord(**values)


"""
Public entry points
"""

def parse_homes_from_api(payload: Any) -> List[PartialRecord]:
    """
    Listing summaries of a gis API response.

    A payload without a homes array means there is no more data.
    """
    homes = _dig(payload, "payload", "homes")
    if not isinstance(homes, list):
        return []
    return [_record_from_home(home) for home in homes if isinstance(home, dict)]


def parse_html_list_page(html: str) -> List[PartialRecord]:
    """
    Listing summaries of a rendered search page.

    Linked data first, then the embedded search state, then result cards.
    """
    soup = BeautifulSoup(html, "html.parser")
    linked = [
        _record_from_json_ld(item)
        for item in _json_ld_items(soup)
        if _is_residential(item)
    ]
    linked = [record for record in linked if record.url]
    if linked:
        return _merge_by_identity(linked)

    embedded = parse_embedded_homes(html)
    if embedded:
        return embedded

    return parse_listing_cards(html)


def parse_html_detail(html: str) -> PartialRecord:
    """
    Detail record of a home page.

    Linked data and embedded state form the structured record; DOM selectors
    only fill the fields those two left empty.
    """
    soup = BeautifulSoup(html, "html.parser")
    structured = parse_property_from_json_ld(_json_ld_items(soup))
    embedded = parse_embedded_detail(html)

    record = PartialRecord()
    if structured is not None:
        record = structured
    if embedded is not None:
        record = record.fill_missing(embedded)
    return record.fill_missing(_detail_from_dom(soup))
