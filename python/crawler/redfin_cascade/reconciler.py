"""
Record reconciliation.

Merges the listing summary of a search method with the detail record of the
home page into the canonical RedfinPropertyItem.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from .config import REDFIN_BASE
from .items import PartialRecord, PropertySource, RedfinPropertyItem
from .text_utils import (
    clean_text,
    ensure_absolute_url,
    format_price,
    normalize_number,
    split_address,
)


def _pick(detail_value: Any, listing_value: Any) -> Any:
    """Detail value when present, else the listing value, else None."""
    if detail_value is not None and detail_value != "":
        return detail_value
    if listing_value is not None and listing_value != "":
        return listing_value
    return None


def compose_address(street: str | None, city: str | None, state: str | None, zip_code: str | None) -> str | None:
    """
    One-line address.

    "<street>, <city>, <state> <zip>" when street, city and state are known,
    otherwise the best fragment available.
    """
    if street and city and state:
        return f"{street}, {city}, {state}{f' {zip_code}' if zip_code else ''}"
    if street:
        return street
    locality = ", ".join(part for part in (city, state) if part)
    if locality:
        return f"{locality}{f' {zip_code}' if zip_code else ''}"
    return zip_code or None


def _address_parts(street: str | None, city: str | None, state: str | None, zip_code: str | None) -> Dict[str, str | None]:
    # A detail page sometimes only offers the one-line address
    if street and "," in street and not city and not state:
        components = split_address(street)
        if components.get("city") and components.get("state"):
            return {
                "street": components.get("street", street),
                "city": components["city"],
                "state": components["state"],
                "zip": zip_code or components.get("zip"),
            }
    return {"street": street, "city": city, "state": state, "zip": zip_code}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_property(
        listing: PartialRecord | None,
        detail: PartialRecord | None,
        source: PropertySource,
        fetched_at: str | None = None,
        ) -> RedfinPropertyItem | None:
    """
    Reconcile a listing summary and a detail record into the output item.

    Args:
        listing: Summary from the search method, may be empty
        detail: Record parsed from the home page, may be empty
        source: Acquisition method of the listing
        fetched_at: Override of the reconciliation timestamp

    Returns:
        The canonical item, or None when neither record identifies the home
    """
    listing = listing or PartialRecord()
    detail = detail or PartialRecord()

    # Identity: listing id, detail id, MLS number, then the URL itself
    property_id = listing.property_id
    if property_id in (None, ""):
        property_id = _pick(detail.property_id, listing.mls_number)
    url = ensure_absolute_url(_pick(listing.url, detail.url))
    if not url and property_id not in (None, ""):
        url = f"{REDFIN_BASE}/home/{property_id}"
    if property_id in (None, ""):
        property_id = url
    if not property_id:
        return None

    parts = _address_parts(
        clean_text(_pick(detail.street_address, listing.street_address)),
        clean_text(_pick(detail.city, listing.city)),
        clean_text(_pick(detail.state, listing.state)),
        clean_text(_pick(detail.zip, listing.zip)),
    )
    address = compose_address(parts["street"], parts["city"], parts["state"], parts["zip"])
    if not parts["street"]:
        # Page heading or linked-data name carries the one-line address
        address = clean_text(_pick(detail.title, listing.title)) or address

    return RedfinPropertyItem(
        propertyId=str(property_id),
        url=url,
        address=address,
        streetAddress=parts["street"],
        city=parts["city"],
        state=parts["state"],
        zip=parts["zip"],
        price=format_price(_pick(detail.price, listing.price)),
        beds=normalize_number(_pick(detail.beds, listing.beds)),
        baths=normalize_number(_pick(detail.baths, listing.baths)),
        sqft=normalize_number(_pick(detail.sqft, listing.sqft)),
        propertyType=_pick(detail.property_type, listing.property_type),
        status=_pick(detail.status, listing.status),
        listingDate=_pick(detail.listing_date, listing.listing_date),
        description=_pick(detail.description, listing.description),
        latitude=_pick(detail.latitude, listing.latitude),
        longitude=_pick(detail.longitude, listing.longitude),
        mlsNumber=_pick(detail.mls_number, listing.mls_number),
        lotSize=_pick(detail.lot_size, listing.lot_size),
        yearBuilt=normalize_number(_pick(detail.year_built, listing.year_built)),
        hoa=_pick(detail.hoa, listing.hoa),
        source=source.value,
        fetched_at=fetched_at or utc_timestamp(),
    )
