# scraper/strategies.py
import asyncio
import hashlib
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from .errors import ExtractionFailure, NavigationError, is_retryable
from .images import (
    dedupe_images,
    embedded_image_urls,
    extract_images,
    is_placeholder,
    parse_dynamic_image_map,
    upgrade_resolution,
)
from .models import Platform, Provenance
from .normalizer import clean_text, normalize_product, parse_price
from .utils import get_logger

logger = get_logger("scraper")

RENDERED_DOM = "rendered_dom"
STATIC_FETCH = "static_fetch"
SYNTHETIC = "synthetic"

TEXT_FIELDS = (
    "title",
    "description",
    "price",
    "original_price",
    "review_count",
    "availability",
    "brand",
    "category",
)

PRICE_PATTERN = re.compile(r"[\$€£¥₹₽]\s*\d[\d,]*(?:\.\d+)?")
IMAGE_SRC_ATTRS = ("src", "data-src", "data-lazy-src", "data-old-hires")


def _first_text(soup, selector):
    if not selector:
        return None
    try:
        el = soup.select_one(selector)
    except ValueError:
        return None
    if el is None:
        return None
    return el.get_text(" ", strip=True) or None


def select_fields(soup, selectors):
    """
    Evaluate a platform's selector set against a DOM snapshot.

    Each selector group is comma separated CSS; the first matching element
    wins. Ratings are often icon-only, so their ``aria-label`` / ``title``
    attributes are consulted when the element has no text.

    Returns:
        dict: Raw field strings keyed like SelectorSet (missing fields absent)
    """
    raw = {}
    for field in TEXT_FIELDS:
        value = _first_text(soup, getattr(selectors, field))
        if value:
            raw[field] = value
    try:
        rating_el = soup.select_one(selectors.rating) if selectors.rating else None
    except ValueError:
        rating_el = None
    if rating_el is not None:
        raw["rating"] = (
            rating_el.get_text(" ", strip=True)
            or rating_el.get("aria-label")
            or rating_el.get("title")
        )
    return raw


async def release_session(session, url):
    """Close a browser session; failures are logged and never propagated."""
    try:
        await session.close()
    except Exception as e:
        logger.warning(f"ResourceCleanupWarning: failed to release browser session for {url}: {e}")


class RenderedDomStrategy:
    """Load the page in a real browser and read fields from the live DOM."""

    name = RENDERED_DOM
    provenance = Provenance.REAL

    def __init__(self, renderer, sleep=asyncio.sleep):
        self.renderer = renderer
        self.sleep = sleep

    async def navigate(self, session, url, policy):
        last_error = None
        for attempt in range(1, policy.attempts + 1):
            try:
                logger.info(f"Navigating to {url} (attempt {attempt}/{policy.attempts})")
                await session.goto(url, policy.wait_until, policy.timeout_ms)
                return
            except NavigationError as e:
                last_error = e
                logger.warning(f"Navigation attempt {attempt} failed: {e}")
                if attempt < policy.attempts:
                    await self.sleep(policy.retry_pause)
        raise NavigationError(
            f"Navigation failed after {policy.attempts} attempts: {last_error}",
            retryable=is_retryable(last_error) if last_error is not None else False,
        )

    async def extract(self, url, config):
        session = await self.renderer.open_session(config.headers)
        try:
            await self.navigate(session, url, config.navigation)
            await self.sleep(config.navigation.settle)
            html = await session.content()
        finally:
            await release_session(session, url)

        soup = BeautifulSoup(html, "lxml")
        raw = select_fields(soup, config.selectors)
        raw["images"] = extract_images(soup, config.images, config.selectors.images)
        return raw


def parse_static_html(html, config):
    """
    Extract raw product fields from server-rendered HTML.

    Platform selectors are tried first; where they miss, generic page
    patterns take over: ``<title>``/``<h1>`` for the title,
    currency-symbol-adjacent numbers for prices, ``src``/``data-src``
    attributes plus embedded JSON image maps for photos, and the meta
    description for the description.

    Args:
        html (str): Raw page HTML
        config (PlatformConfig): Platform configuration

    Returns:
        dict: Raw field values
    """
    soup = BeautifulSoup(html, "lxml")
    raw = select_fields(soup, config.selectors)

    if not raw.get("title"):
        title_tag = soup.find("title")
        h1 = soup.find("h1")
        raw["title"] = (
            (title_tag.get_text(strip=True) if title_tag else None)
            or (h1.get_text(" ", strip=True) if h1 else None)
        )

    if not raw.get("price"):
        prices = PRICE_PATTERN.findall(soup.get_text(" "))
        if prices:
            raw["price"] = prices[0]
            if not raw.get("original_price") and len(prices) > 1:
                first, second = parse_price(prices[0]), parse_price(prices[1])
                if first is not None and second is not None and second > first:
                    raw["original_price"] = prices[1]

    if not raw.get("description"):
        meta = soup.find("meta", attrs={"name": "description"}) or soup.find(
            "meta", attrs={"property": "og:description"}
        )
        if meta and meta.get("content"):
            raw["description"] = meta["content"]

    hints = config.images
    images = extract_images(soup, hints, config.selectors.images)
    candidates = []
    for el in soup.select("[data-a-dynamic-image]"):
        candidates.extend(parse_dynamic_image_map(el.get("data-a-dynamic-image")))
    if config.platform == Platform.AMAZON:
        candidates.extend(u for u in embedded_image_urls(html) if "media-amazon" in u)
    for img in soup.find_all("img"):
        for attr in IMAGE_SRC_ATTRS:
            src = img.get(attr)
            if src and not is_placeholder(src):
                candidates.append(src.strip())
    og_image = soup.find("meta", attrs={"property": "og:image"})
    if og_image and og_image.get("content"):
        candidates.append(og_image["content"])

    for src in candidates:
        if src.startswith("//"):
            src = "https:" + src
        if hints.required_substring and hints.required_substring not in src:
            continue
        images.append(upgrade_resolution(src, hints.upgrade))
    # keep plenty here, the normalizer applies the final cap after filtering
    raw["images"] = dedupe_images(images, limit=len(images))
    return raw


class StaticFetchStrategy:
    """Plain HTTP GET plus HTML pattern parsing."""

    name = STATIC_FETCH
    provenance = Provenance.REAL

    def __init__(self, fetcher):
        self.fetcher = fetcher

    async def extract(self, url, config):
        html = await self.fetcher.fetch(url, config.headers)
        return parse_static_html(html, config)


SYNTHETIC_TEMPLATES = {
    Platform.AMAZON: {
        "title": "Premium Wireless Bluetooth Headphones",
        "description": "Over-ear wireless headphones with active noise cancellation and 30-hour battery life.",
        "price": 89.99,
        "original_price": 129.99,
        "rating": "4.5 out of 5 stars",
        "review_count": 2847,
        "brand": "TechAudio",
    },
    Platform.ALIBABA: {
        "title": "Wholesale Custom Logo Wireless Headphones",
        "description": "Wireless headphones for wholesale, customisable with your logo. MOQ 100 pieces.",
        "price": 15.50,
        "original_price": 35.00,
        "rating": "4.2",
        "review_count": 156,
        "brand": "Shenzhen Audio Tech",
    },
    Platform.ALIEXPRESS: {
        "title": "Gaming Wireless Headset RGB",
        "description": "Gaming headset with RGB lighting and a comfortable design for long sessions.",
        "price": 24.99,
        "original_price": 49.99,
        "rating": "4.3",
        "review_count": 1234,
        "brand": "GameAudio Pro",
    },
}

DEFAULT_TEMPLATE = {
    "title": "Wireless Bluetooth Headphones",
    "description": "Wireless headphones with clear sound and a comfortable design.",
    "price": 45.99,
    "original_price": 69.99,
    "rating": "4.0",
    "review_count": 500,
    "brand": "AudioTech",
}


def url_keywords(url, limit=3):
    words = []
    for part in urlparse(url).path.split("/"):
        for word in re.split(r"[-_]", part):
            if len(word) > 2 and word.isalpha():
                words.append(word.capitalize())
    return words[:limit]


class SyntheticStrategy:
    """
    Deterministic placeholder product seeded from the URL and platform.

    Only used after every real strategy failed terminally, so a batch still
    yields a structured record. Results are tagged Provenance.SYNTHETIC and
    must never be mistaken for scraped data.
    """

    name = SYNTHETIC
    provenance = Provenance.SYNTHETIC

    async def extract(self, url, config):
        return self.generate(url, config.platform)

    def generate(self, url, platform):
        digest = hashlib.sha256(f"{platform.value}|{url}".encode("utf-8")).hexdigest()
        seed = int(digest[:8], 16)
        template = SYNTHETIC_TEMPLATES.get(platform, DEFAULT_TEMPLATE)

        keywords = url_keywords(url)
        title = template["title"]
        if keywords:
            title = f"{' '.join(keywords)} - {title}"

        factor = 0.85 + (seed % 100) / 100 * 0.3
        image_count = 1 + seed % 3
        return {
            "title": title,
            "description": template["description"],
            "price": f"${template['price'] * factor:.2f}",
            "original_price": f"${template['original_price'] * factor:.2f}",
            "images": [
                f"https://picsum.photos/seed/{digest[:12]}-{i}/800/800.jpg"
                for i in range(image_count)
            ],
            "rating": template["rating"],
            "review_count": template["review_count"],
            "brand": template["brand"],
            "availability": "In Stock",
        }


class StrategyChain:
    """
    Run extraction strategies in order until one yields a title.

    Strategy failures are logged and fall through to the next strategy. When
    every real strategy failed: a retryable failure is re-raised so the retry
    controller can back off; otherwise the synthetic fallback runs (if
    allowed) or ExtractionFailure is raised.
    """

    def __init__(self, strategies, synthetic=None):
        self.strategies = list(strategies)
        self.synthetic = synthetic

    async def run(self, url, config, allow_synthetic=True):
        failures = []
        for strategy in self.strategies:
            try:
                raw = await strategy.extract(url, config)
            except Exception as e:
                logger.warning(f"{strategy.name} failed for {url}: {e}")
                failures.append((strategy.name, e))
                continue
            if not clean_text(raw.get("title")):
                logger.warning(f"{strategy.name} found no title for {url}")
                failures.append(
                    (strategy.name, ExtractionFailure(f"{strategy.name} produced no title"))
                )
                continue
            logger.info(f"{strategy.name} extracted {url}")
            return normalize_product(
                raw, url, config.platform, strategy.provenance, strategy.name
            )

        for _, error in failures:
            if is_retryable(error):
                raise error

        if allow_synthetic and self.synthetic is not None:
            logger.warning(f"All real strategies failed for {url}, using synthetic fallback")
            raw = await self.synthetic.extract(url, config)
            return normalize_product(
                raw, url, config.platform, self.synthetic.provenance, self.synthetic.name
            )

        summary = "; ".join(f"{name}: {error}" for name, error in failures)
        raise ExtractionFailure(
            f"All extraction strategies failed for {url} ({summary})", retryable=False
        )


def build_chain(renderer, fetcher, sleep=asyncio.sleep, synthetic=True):
    return StrategyChain(
        [RenderedDomStrategy(renderer, sleep=sleep), StaticFetchStrategy(fetcher)],
        synthetic=SyntheticStrategy() if synthetic else None,
    )
