# Site configuration for the Redfin cascade scraper
import re
from typing import Dict, FrozenSet, List, Tuple

REDFIN_BASE = "https://www.redfin.com"
REDFIN_API_GIS = f"{REDFIN_BASE}/stingray/api/gis"

# The gis endpoint prefixes every JSON body with this sentinel
JSON_PREFIX = re.compile(r"^\s*\{\}&&")

# Region type name to the numeric code expected by the gis endpoint
REGION_TYPE_CODES: Dict[str, int] = {
    "city": 6,
    "zipcode": 5,
    "neighborhood": 4,
    "county": 2,
    "state": 1,
}
DEFAULT_REGION_TYPE = "city"

# Static gis query parameters: active listings, every property type
API_STATIC_PARAMS: Dict[str, str | int] = {
    "al": 1,
    "status": 9,
    "uipt": "1,2,3,4,5,6,7,8,9",
    "sf": "1,2,3,4,5,6,7,8,9",
    "v": 8,
}

# Anti-bot signals
BLOCK_STATUS: FrozenSet[int] = frozenset({403, 429, 503})
BLOCK_PHRASES: Tuple[str, ...] = (
    "captcha",
    "unusual traffic",
    "access denied",
)

DEFAULT_TIMEOUT_MS = 35000
BROWSER_SETTLE_DELAY_MS: Tuple[int, int] = (1500, 3000)
BROWSER_VIEWPORT: Dict[str, int] = {"width": 1366, "height": 768}
BROWSER_LAUNCH_ARGS: List[str] = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
]
# Hides navigator.webdriver from the site's bot checks
BROWSER_INIT_SCRIPT = "Object.defineProperty(navigator, 'webdriver', { get: () => false });"

USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0",
]

# JSON-LD @type values that describe a home
RESIDENTIAL_LD_TYPES: FrozenSet[str] = frozenset({
    "Product",
    "Apartment",
    "SingleFamilyResidence",
    "House",
    "Residence",
})

# Search result cards
CARD_SELECTOR = ", ".join([
    '[data-rf-test-id="abp-card"]',
    '[data-rf-test-name="basic-card"]',
    '[data-rf-test-name="basicNode-homeCard"]',
    ".HomeCardContainer",
])
CARD_PRICE_SELECTOR = '[data-rf-test-id="abp-price"], [data-rf-test-name="homecard-price"], .homecardV2Price'
CARD_STREET_SELECTOR = '[data-rf-test-id="abp-streetLine"], .homeAddressV2, [data-rf-test-name="homecard-address"]'
CARD_CITY_STATE_ZIP_SELECTOR = '[data-rf-test-id="abp-cityStateZip"], .homeAddressV2'
CARD_BEDS_SELECTOR = '[data-rf-test-id="abp-beds"]'
CARD_BATHS_SELECTOR = '[data-rf-test-id="abp-baths"]'
CARD_SQFT_SELECTOR = '[data-rf-test-id="abp-sqft"]'

# Detail page selectors, tried in order for each field
DETAIL_SELECTORS: Dict[str, List[str]] = {
    "title": ["h1", '[data-rf-test-id="abp-h1"]'],
    "price": ['[data-rf-test-id="abp-price"]', ".statsValue"],
    "beds": ['[data-rf-test-id="abp-beds"]'],
    "baths": ['[data-rf-test-id="abp-baths"]'],
    "sqft": ['[data-rf-test-id="abp-sqft"]'],
    "street_address": ['[data-rf-test-id="abp-streetLine"]'],
    "description": [".remarks", '[data-rf-test-id="abp-description"]', ".propertyDescription"],
    "lot_size": ['[data-rf-test-id="lot-size"]'],
    "year_built": ['[data-rf-test-id="year-built"]'],
    "hoa": ['[data-rf-test-id="hoa-dues"]'],
    "status": ['[data-rf-test-id="abp-status"]'],
    "listing_date": ['[data-rf-test-id="listing-date"]'],
    "mls_number": ['[data-rf-test-id="mls-number"]'],
}
FULL_ADDRESS_SELECTOR = ".full-address"

# Twitter card meta tags published on every home page
DETAIL_META_TAGS: Dict[str, str] = {
    "twitter:text:price": "price",
    "twitter:text:beds": "beds",
    "twitter:text:baths": "baths",
    "twitter:text:sqft": "sqft",
    "twitter:text:street_address": "street_address",
    "twitter:text:city": "city",
    "twitter:text:state_code": "state",
    "twitter:text:zip": "zip",
}

# Labels of the "Key Details" rows
KEY_DETAIL_LABELS: Dict[str, str] = {
    "Property Type": "property_type",
    "Year Built": "year_built",
    "Lot Size": "lot_size",
}
