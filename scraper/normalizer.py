# scraper/normalizer.py
"""Pure helpers that turn raw extracted fields into a ScrapedProduct."""
import re
from decimal import ROUND_HALF_UP, Decimal
from urllib.parse import urljoin, urlparse

from .images import IMAGE_EXTENSIONS, MAX_IMAGES, dedupe_images
from .models import Availability, Provenance, ScrapedProduct

CURRENCY_SYMBOLS = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "₽": "RUB",
}

NUMBER_TOKEN = re.compile(r"\d[\d.,]*")
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def clean_text(text):
    """Collapse whitespace and control characters; None becomes ''."""
    if not text:
        return ""
    text = CONTROL_CHARS.sub(" ", str(text))
    return re.sub(r"\s+", " ", text).strip()


def _resolve_separators(token):
    token = token.rstrip(".,")
    if "," in token and "." in token:
        # whichever separator comes last is the decimal point
        if token.rfind(",") > token.rfind("."):
            token = token.replace(".", "").replace(",", ".")
        else:
            token = token.replace(",", "")
    elif "," in token:
        head, _, tail = token.rpartition(",")
        if len(tail) == 2 and head.count(",") == 0:
            token = f"{head}.{tail}"
        else:
            token = token.replace(",", "")
    elif token.count(".") > 1:
        head, _, tail = token.rpartition(".")
        token = head.replace(".", "") + ("." + tail if len(tail) != 3 else tail)
    return token


def parse_price(value):
    """
    Parse the first price in a string.

    Keeps digits with their decimal/thousands separators, so "$1,299.99"
    gives 1299.99, "12,99 €" gives 12.99 and "$15.50 - $25.30" gives 15.5.

    Returns:
        float or None: The price, or None if no number could be read
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    match = NUMBER_TOKEN.search(str(value))
    if not match:
        return None
    try:
        return float(_resolve_separators(match.group(0)))
    except ValueError:
        return None


def detect_currency(value):
    """ISO code for the first known currency symbol in the string, else USD."""
    if not value:
        return "USD"
    for ch in str(value):
        if ch in CURRENCY_SYMBOLS:
            return CURRENCY_SYMBOLS[ch]
    return "USD"


def is_valid_image_url(url):
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    path = parsed.path.lower()
    return any(ext in path for ext in IMAGE_EXTENSIONS)


def normalize_images(images, base_url=None):
    """
    Keep valid absolute image URLs, deduped by photo and capped at MAX_IMAGES.

    Protocol-relative URLs are upgraded to https; site-relative paths are
    resolved against ``base_url`` when one is given.
    """
    cleaned = []
    for img in images or []:
        if not img or not isinstance(img, str):
            continue
        img = img.strip()
        if img.startswith("//"):
            img = "https:" + img
        elif base_url and img.startswith("/"):
            img = urljoin(base_url, img)
        if is_valid_image_url(img):
            cleaned.append(img)
    return dedupe_images(cleaned, limit=MAX_IMAGES)


def parse_rating(value):
    """Leading number of a rating string, clamped to [0, 5]."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        rating = float(value)
    else:
        match = re.search(r"\d+(?:[.,]\d+)?", str(value))
        if not match:
            return None
        rating = float(match.group(0).replace(",", "."))
    return min(max(rating, 0.0), 5.0)


def parse_number(value):
    """Digits-only count, e.g. "2,847 ratings" gives 2847."""
    if value is None:
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    digits = re.sub(r"[^0-9]", "", str(value))
    return int(digits) if digits else None


def normalize_availability(value):
    if not value:
        return Availability.UNKNOWN
    lower = str(value).lower()
    if "out of stock" in lower or "unavailable" in lower or "sold out" in lower:
        return Availability.OUT_OF_STOCK
    if "limited" in lower or re.search(r"only \d+ left", lower):
        return Availability.LIMITED_STOCK
    if "in stock" in lower or "available" in lower:
        return Availability.IN_STOCK
    return Availability.UNKNOWN


def normalize_specifications(specs):
    if not isinstance(specs, dict):
        return {}
    normalized = {}
    for key, value in specs.items():
        if isinstance(value, str) and value.strip():
            normalized[clean_text(key)] = clean_text(value)
    return normalized


def calculate_discount_percentage(current, original):
    """Whole-number discount, halves rounded up (12.5% -> 13)."""
    if not current or not original or original <= current:
        return None
    current, original = Decimal(str(current)), Decimal(str(original))
    percentage = (original - current) / original * 100
    return int(percentage.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def normalize_product(raw, url, platform, provenance=Provenance.REAL, strategy=None):
    """
    Build a ScrapedProduct from whatever fields a strategy managed to extract.

    Args:
        raw (dict): Raw field values keyed like SelectorSet
        url (str): Source product URL
        platform (Platform): Detected platform
        provenance (Provenance): Whether the fields came from the live page
        strategy (str, optional): Name of the strategy that produced ``raw``

    Returns:
        ScrapedProduct: Record satisfying every product invariant
    """
    price = parse_price(raw.get("price"))
    original_price = parse_price(raw.get("original_price"))
    return ScrapedProduct(
        title=clean_text(raw.get("title")) or "Untitled Product",
        description=clean_text(raw.get("description")),
        price=price,
        original_price=original_price,
        currency=detect_currency(raw.get("price")),
        images=normalize_images(raw.get("images"), base_url=url),
        rating=parse_rating(raw.get("rating")),
        review_count=parse_number(raw.get("review_count")),
        brand=clean_text(raw.get("brand")),
        category=clean_text(raw.get("category")),
        availability=normalize_availability(raw.get("availability")),
        source_url=url,
        source_platform=platform,
        specifications=normalize_specifications(raw.get("specifications")),
        discount_percentage=calculate_discount_percentage(price, original_price),
        provenance=provenance,
        strategy=strategy,
    )
