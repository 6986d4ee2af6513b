"""
Text normalization helpers.

Pure functions shared by the extractors and the reconciler: whitespace and
markup cleanup, URL absolutization, numeric and currency normalization and
address splitting.
"""

import re
from typing import Any, Dict

import usaddress  # type: ignore[import-untyped]
from bs4 import BeautifulSoup

from .config import REDFIN_BASE

_WHITESPACE = re.compile(r"\s+")
_NON_NUMERIC = re.compile(r"[^\d.]")
_LEADING_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")

_STREET_LABELS = (
    "AddressNumber",
    "AddressNumberPrefix",
    "StreetNamePreDirectional",
    "StreetNamePreType",
    "StreetName",
    "StreetNamePostType",
    "StreetNamePostDirectional",
    "OccupancyType",
    "OccupancyIdentifier",
)


def clean_text(text: Any) -> str | None:
    """Collapse runs of whitespace; None for empty input."""
    if text is None:
        return None
    cleaned = _WHITESPACE.sub(" ", str(text)).strip()
    return cleaned or None


def strip_markup(fragment: str | None) -> str | None:
    """Drop tags from an HTML fragment and return its cleaned text."""
    if not fragment:
        return None
    if "<" not in fragment:
        return clean_text(fragment)
    return clean_text(BeautifulSoup(fragment, "html.parser").get_text(" "))


def ensure_absolute_url(url: str | None) -> str | None:
    """Prefix site-relative links with the Redfin origin."""
    if not url:
        return None
    url = url.strip()
    if not url:
        return None
    if url.startswith("http"):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    return f"{REDFIN_BASE}{'' if url.startswith('/') else '/'}{url}"


def extract_home_id(url: str | None) -> str | None:
    """
    Extract the Redfin home id from a property URL.

    Args:
        url: Redfin property URL (e.g. "https://www.redfin.com/WA/Redmond/11594-174th-Ct-NE-98052/home/22497318")

    Returns:
        Home id (e.g. "22497318") or None if not found
    """
    if not url:
        return None
    url_parts = url.split("?")[0].split("/")
    if "home" in url_parts:
        home_index = url_parts.index("home")
        if len(url_parts) > home_index + 1 and url_parts[home_index + 1]:
            return url_parts[home_index + 1]
    return None


def normalize_number(value: Any) -> int | float | None:
    """
    Convert a count, area or price to a number.

    Strings lose every character that is not a digit or a decimal point
    ("1,850 Sq. Ft." -> 1850). Anything that leaves nothing usable is None,
    never zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        return None

    # Leading number only: "1850.." (from "1,850 Sq. Ft.") reads as 1850
    match = _LEADING_NUMBER.match(_NON_NUMERIC.sub("", value))
    if not match:
        return None
    number = float(match.group())
    return int(number) if number.is_integer() else number


def _group_thousands(number: int | float) -> str:
    if isinstance(number, float):
        if number.is_integer():
            return f"{int(number):,}"
        return f"{number:,.3f}".rstrip("0").rstrip(".")
    return f"{number:,}"


def format_price(value: Any) -> str | None:
    """
    Format a price as a US currency string.

    450000 -> "$450,000". A string that already starts with "$" and holds a
    digit is returned as is; other strings are normalized first. Unusable
    input gives None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return f"${_group_thousands(value)}"
    if isinstance(value, str):
        if value.startswith("$"):
            return value if any(char.isdigit() for char in value) else None
        number = normalize_number(value)
        if number is None:
            return None
        return f"${_group_thousands(number)}"
    return None


def split_city_state_zip(text: str | None) -> Dict[str, str | None]:
    """Split a card line like "Chicago, IL 60614" into its parts."""
    result: Dict[str, str | None] = {"city": None, "state": None, "zip": None}
    text = clean_text(text)
    if not text:
        return result
    parts = text.split(",")
    result["city"] = clean_text(parts[0])
    if len(parts) > 1:
        state_zip = parts[1].strip().split(" ")
        result["state"] = state_zip[0] or None
        result["zip"] = state_zip[1] if len(state_zip) > 1 and state_zip[1] else None
    return result


def split_address(address: str | None) -> Dict[str, str]:
    """
    Split a one-line US address into street, city, state and zip.

    Only the components usaddress recognizes are returned; an address it
    cannot tag gives an empty dict.
    """
    address = clean_text(address)
    if not address:
        return {}
    try:
        tagged, _address_type = usaddress.tag(address)
    except usaddress.RepeatedLabelError:
        return {}

    components: Dict[str, str] = {}
    street = " ".join(filter(None, (tagged.get(label, "") for label in _STREET_LABELS)))
    if street:
        components["street"] = street
    for label, key in (("PlaceName", "city"), ("StateName", "state"), ("ZipCode", "zip")):
        value = clean_text(tagged.get(label))
        if value:
            components[key] = value.rstrip(",")
    return components
