# scraper/images.py
import json
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup

MAX_IMAGES = 10

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")

IMAGE_ATTRIBUTES = (
    "data-old-hires",
    "data-zoom-hires",
    "src",
    "data-src",
    "data-lazy-src",
)

PLACEHOLDER_MARKERS = ("data:image", "1x1", "transparent", "spacer", "avatar", "sprite")

# Amazon size modifiers such as ._AC_SX300_SY300_. or ._SS40_.
AMAZON_MODIFIER = re.compile(r"\._[A-Za-z0-9_,]+_\.")
AMAZON_HIRES = "._AC_SL1500_."
# 800x800, _350x350, -1200x1200, @2x, plus Shopify's _800x, _x400, _large
# and _crop_center suffixes
SHOPIFY_NAMED_SIZES = {
    "pico": 16,
    "icon": 32,
    "thumb": 50,
    "small": 100,
    "compact": 160,
    "medium": 240,
    "large": 480,
    "grande": 600,
    "original": 2048,
    "master": 2048,
}
SIZE_TOKEN = re.compile(
    r"[_-]?\d{2,4}x\d{2,4}|_\d{2,4}x(?![a-z0-9])|_x\d{2,4}|@\dx"
    r"|_(?:" + "|".join(SHOPIFY_NAMED_SIZES) + r")(?![a-z0-9])"
    r"|_crop_(?:center|top|bottom|left|right)",
    re.I,
)
DIMENSION = re.compile(r"(\d{2,4})x(\d{2,4})", re.I)
SHOPIFY_DIMENSION = re.compile(r"_(\d{2,4})x(?![a-z0-9])|_x(\d{2,4})", re.I)
SHOPIFY_NAMED = re.compile(r"_(" + "|".join(SHOPIFY_NAMED_SIZES) + r")(?![a-z0-9])", re.I)
AMAZON_DIMENSION = re.compile(r"_(?:SL|SX|SY|UL|UX|UY|SS|US|AC_SL|AC_SX|AC_SY|AC_UL)(\d{2,4})")

EMBEDDED_IMAGE_KEYS = re.compile(
    r'"(?:hiRes|large|mainUrl|zoomUrl|imageUrl|image)"\s*:\s*"(https?:[^"]+)"'
)


def canonical_image_id(url):
    """
    Derive a key that is shared by every resolution of the same photo.

    The host and query string are dropped (CDN shards and resize parameters
    vary), the file stem is cut at its first dot so Amazon-style
    ``ID._AC_SX300_.jpg`` and Alibaba-style ``ID.jpg_350x350.jpg`` collapse,
    and remaining size tokens (``WxH``, ``@2x`` and Shopify's ``_800x``,
    ``_x400``, ``_large`` or ``_crop_center``) are stripped.

    Args:
        url (str): Absolute image URL

    Returns:
        str: Lowercased canonical identifier
    """
    path = urlparse(url).path
    directory, _, filename = path.rpartition("/")
    stem = filename.split(".", 1)[0]
    stem = SIZE_TOKEN.sub("", stem) or stem
    return f"{directory}/{stem}".lower()


def resolution_score(url):
    """Best-effort pixel size hint parsed from the URL; 0 when unknown."""
    scores = [int(m.group(1)) for m in AMAZON_DIMENSION.finditer(url)]
    for w, h in DIMENSION.findall(url):
        scores.append(max(int(w), int(h)))
    for w, h in SHOPIFY_DIMENSION.findall(url):
        scores.append(int(w or h))
    for name in SHOPIFY_NAMED.findall(url):
        scores.append(SHOPIFY_NAMED_SIZES[name.lower()])
    return max(scores) if scores else 0


def upgrade_resolution(url, rule):
    """Rewrite a thumbnail URL to the platform's high-resolution variant."""
    if rule == "amazon":
        return AMAZON_MODIFIER.sub(AMAZON_HIRES, url, count=1)
    if rule == "alibaba":
        return re.sub(r"_\d{2,4}x\d{2,4}", "_800x800", url, count=1)
    return url


def is_placeholder(src):
    lowered = src.lower()
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


def dedupe_images(urls, limit=MAX_IMAGES):
    """
    Collapse resolution variants of the same photo, keeping the largest.

    Order follows the first time each canonical photo was seen; the kept URL
    for a slot is replaced whenever a higher-resolution variant turns up.
    """
    slots = {}
    order = []
    for url in urls:
        key = canonical_image_id(url)
        if key not in slots:
            slots[key] = url
            order.append(key)
        elif resolution_score(url) > resolution_score(slots[key]):
            slots[key] = url
    return [slots[key] for key in order][:limit]


def parse_dynamic_image_map(raw):
    """
    Decode an embedded ``{image_url: [width, height]}`` JSON map.

    Returns the URLs largest first. Malformed JSON yields an empty list.
    """
    if not raw:
        return []
    try:
        image_map = json.loads(raw.replace("&quot;", '"'))
    except ValueError:
        return []
    if not isinstance(image_map, dict):
        return []

    def area(item):
        dims = item[1]
        if isinstance(dims, (list, tuple)) and len(dims) == 2:
            try:
                return int(dims[0]) * int(dims[1])
            except (TypeError, ValueError):
                return 0
        return 0

    return [url for url, _ in sorted(image_map.items(), key=area, reverse=True)]


def embedded_image_urls(html):
    """Image URLs referenced from inline JSON (gallery state blobs)."""
    urls = []
    for match in EMBEDDED_IMAGE_KEYS.finditer(html):
        urls.append(match.group(1).replace("\\/", "/"))
    return urls


def _element_sources(el):
    sources = []
    dynamic = el.get("data-a-dynamic-image")
    if dynamic:
        sources.extend(parse_dynamic_image_map(dynamic))
    for attr in IMAGE_ATTRIBUTES:
        value = el.get(attr)
        if value:
            sources.append(value.strip())
    return sources


def _select(soup, selector):
    if not selector:
        return []
    try:
        return soup.select(selector)
    except ValueError:
        # soupsieve rejects a few selectors browsers tolerate
        return []


def extract_images(snapshot, hints, fallback_selector=""):
    """
    Pull the distinct product photos out of a DOM snapshot.

    Candidates are gathered from the thumbnail rail, the main image
    container and alternate galleries (in that order), then from the
    platform's generic image selector if nothing turned up. Each candidate is
    upgraded to its high-resolution variant and deduplicated by canonical id.

    Args:
        snapshot (BeautifulSoup | str): Parsed page or raw HTML
        hints (ImageHints): Platform image hints
        fallback_selector (str): Selector used when the hinted containers are empty

    Returns:
        list[str]: At most ``hints.limit`` image URLs (never more than MAX_IMAGES)
    """
    soup = snapshot if isinstance(snapshot, BeautifulSoup) else BeautifulSoup(snapshot, "lxml")

    def collect(selectors):
        found = []
        for selector in selectors:
            for el in _select(soup, selector):
                for src in _element_sources(el):
                    if src.startswith("//"):
                        src = "https:" + src
                    if not src.startswith("http") or is_placeholder(src):
                        continue
                    if hints.required_substring and hints.required_substring not in src:
                        continue
                    found.append(upgrade_resolution(src, hints.upgrade))
        return found

    candidates = collect((hints.thumbnails, hints.main, hints.galleries))
    if not candidates:
        candidates = collect((fallback_selector,))
    return dedupe_images(candidates, limit=min(hints.limit, MAX_IMAGES))
