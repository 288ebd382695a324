# scraper/platforms.py
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict

from .errors import InvalidUrlError, UnknownPlatformError
from .models import Platform, UrlValidationResult

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

SHOPIFY_INDICATORS = ("myshopify.com", "shopifypreview.com", "cdn.shopify.com")

# checked in order, first substring hit wins
DOMAIN_PATTERNS = (
    (Platform.AMAZON, ("amazon.",)),
    (Platform.ALIBABA, ("alibaba.",)),
    (Platform.ALIEXPRESS, ("aliexpress.",)),
    (Platform.EBAY, ("ebay.",)),
    (Platform.WALMART, ("walmart.",)),
    (Platform.SHOPIFY, ("shopify",) + SHOPIFY_INDICATORS),
)


class SelectorSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    description: str
    price: str
    original_price: str
    images: str
    rating: str
    review_count: str
    availability: str
    brand: str
    category: str = ""


class NavigationPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    wait_until: str = "networkidle"
    timeout_ms: int = 45000
    attempts: int = 2
    retry_pause: float = 2.0  # seconds between navigation tries
    settle: float = 2.0  # seconds to let late content render


class ImageHints(BaseModel):
    """Where a platform keeps its product photos and how to upgrade them."""

    model_config = ConfigDict(frozen=True)

    thumbnails: str = ""
    main: str = ""
    galleries: str = ""
    required_substring: Optional[str] = None
    upgrade: Optional[str] = None  # "amazon" or "alibaba"
    limit: int = 8


class PlatformConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: Platform
    selectors: SelectorSet
    base_headers: Tuple[Tuple[str, str], ...]
    delay: float  # seconds before every attempt
    retries: int = 3
    navigation: NavigationPolicy = NavigationPolicy()
    images: ImageHints = ImageHints()

    @property
    def headers(self) -> Dict[str, str]:
        """Request headers as a fresh dict; callers may mutate it freely."""
        return dict(self.base_headers)

    def with_overrides(self, overrides=None):
        """Return a copy with per-call headers, delay and retry budget applied."""
        if overrides is None:
            return self
        update = {}
        if overrides.headers:
            update["base_headers"] = tuple({**self.headers, **overrides.headers}.items())
        if overrides.delay is not None:
            update["delay"] = overrides.delay
        if overrides.retries is not None:
            update["retries"] = overrides.retries
        return self.model_copy(update=update) if update else self


def _headers(**extra):
    headers = {"User-Agent": DEFAULT_USER_AGENT}
    headers.update(extra)
    return tuple(headers.items())


PLATFORM_CONFIGS = {
    Platform.AMAZON: PlatformConfig(
        platform=Platform.AMAZON,
        selectors=SelectorSet(
            title="#productTitle, .product-title",
            description="#feature-bullets ul, .product-description",
            price=".a-price .a-offscreen, .a-offscreen, .a-price-whole",
            original_price=".a-text-strike .a-offscreen, .a-price.a-text-price .a-offscreen",
            images=(
                "#altImages .imageThumbnail img, #altImages img, #landingImage, "
                "#main-image-container .a-dynamic-image, .imageBlock img, "
                'img[src*="media-amazon"], img[src*="images-amazon"]'
            ),
            rating=".a-icon-alt, .review-rating .a-icon-alt",
            review_count="#acrCustomerReviewText, .review-count",
            availability="#availability span, .availability-msg",
            brand=".po-brand .po-break-word, #bylineInfo, #brand",
            category="#wayfinding-breadcrumbs_feature_div li a, .a-unordered-list.a-horizontal.a-size-small li a",
        ),
        base_headers=_headers(
            **{
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            }
        ),
        delay=2.0,
        retries=3,
        navigation=NavigationPolicy(wait_until="load", timeout_ms=40000),
        images=ImageHints(
            thumbnails="#altImages .imageThumbnail img, #altImages .imageThumb img, #altImages img",
            main="#landingImage, #main-image-container .a-dynamic-image",
            galleries=".image-wrapper img, .imageBlock img, .product-image img",
            upgrade="amazon",
            limit=8,
        ),
    ),
    Platform.ALIBABA: PlatformConfig(
        platform=Platform.ALIBABA,
        selectors=SelectorSet(
            title=".product-title, .product-name h1, h1[data-spm-anchor-id], h1",
            description=".product-description, .detail-description, .product-overview",
            price=".price-now, .price .price-value, .price-range, .ma-price-range",
            original_price=".price-original, .price-was, .original-price",
            images=".image-thumb img, .images-list img, .main-image img, img[src*=\"alibaba\"]",
            rating=".star-rating, .rating-value, .score-average",
            review_count=".review-count, .reviews-count, .feedback-count",
            availability=".availability, .stock-status, .inventory-status",
            brand=".brand-name, .supplier-name, .company-name",
            category=".detail-breadcrumb a, .breadcrumb a",
        ),
        base_headers=_headers(
            **{
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            }
        ),
        delay=4.0,
        retries=3,
        navigation=NavigationPolicy(wait_until="domcontentloaded", timeout_ms=60000),
        images=ImageHints(
            thumbnails=".image-thumb img, .images-list img, .image-item img",
            main=".image-view img, .main-image img, .product-image img",
            galleries=".product-image img, .gallery-image img, img[src*=\"alibaba\"]",
            required_substring="alibaba",
            upgrade="alibaba",
            limit=10,
        ),
    ),
    Platform.ALIEXPRESS: PlatformConfig(
        platform=Platform.ALIEXPRESS,
        selectors=SelectorSet(
            title=".product-title-text, .x-item-title-label, h1",
            description=".product-description, .product-overview",
            price=".product-price-current, .notranslate",
            original_price=".product-price-original, .price-original",
            images=".images-list img, .product-image img",
            rating=".overview-rating-average, .rating-value",
            review_count=".product-reviewer-reviews, .review-count",
            availability=".quantity-info, .product-quantity-tip",
            brand=".store-name, .brand-name",
        ),
        base_headers=_headers(),
        delay=2.5,
        retries=3,
        images=ImageHints(
            thumbnails=".images-list img",
            main=".magnifier-image, .product-image img",
            upgrade="alibaba",
        ),
    ),
    Platform.EBAY: PlatformConfig(
        platform=Platform.EBAY,
        selectors=SelectorSet(
            title=".x-item-title__mainTitle, .x-item-title-label, .it-ttl, h1",
            description=".u-flL.condText, .product-description",
            price=".x-price-primary, .notranslate, .u-flL.price",
            original_price=".x-additional-info__textual-display, .u-flL.price .original",
            images="#icImg, .ux-image-carousel-item img, .img img",
            rating=".reviews .rating, .ebay-star-rating",
            review_count=".reviews .review-count",
            availability=".d-quantity__availability, .qtySubTxt, .qty-text",
            brand=".u-flL.brand, .brand-name",
            category=".seo-breadcrumb-text, .breadcrumbs a",
        ),
        base_headers=_headers(),
        delay=2.0,
        retries=3,
        images=ImageHints(
            thumbnails=".ux-image-filmstrip-carousel img",
            main="#icImg, .ux-image-carousel-item.active img",
            galleries=".ux-image-carousel-item img",
        ),
    ),
    Platform.WALMART: PlatformConfig(
        platform=Platform.WALMART,
        selectors=SelectorSet(
            title='h1[itemprop="name"], h1[data-automation-id="product-title"], h1',
            description=".about-desc, .product-description",
            price='[itemprop="price"], .price-current',
            original_price=".price-strikethrough, .price-was",
            images=".product-images img, .hero-image img",
            rating=".average-rating, .rating-number",
            review_count=".review-count, .reviews-section-header",
            availability=".fulfillment-shipping-text, .availability",
            brand='.brand-name, [data-automation-id="brand-name"]',
        ),
        base_headers=_headers(),
        delay=2.0,
        retries=3,
        images=ImageHints(
            thumbnails='[data-testid="vertical-carousel-container"] img',
            main=".hero-image img",
            galleries=".product-images img",
        ),
    ),
    Platform.SHOPIFY: PlatformConfig(
        platform=Platform.SHOPIFY,
        selectors=SelectorSet(
            title=".product__title, .product-title, h1.product-single__title, h1",
            description=".product__description, .product-description, .rte",
            price=".price-item--sale, .product__price, .product-single__price, .price",
            original_price=".price-item--regular, .price--compare, .product__price--compare",
            images=".product__media img, .product__photos img, .product-single__photos img",
            rating=".rating, .product-rating",
            review_count=".review-count, .product-reviews-count",
            availability=".product-form__availability, .product__availability",
            brand=".product__vendor, .vendor",
        ),
        base_headers=_headers(),
        delay=1.5,
        retries=3,
        images=ImageHints(
            thumbnails=".thumbnail-list img, .product__thumbs img",
            main=".product__media img, .product-featured-media img",
            galleries=".product__photos img, .product-single__photos img",
        ),
    ),
    Platform.GENERIC: PlatformConfig(
        platform=Platform.GENERIC,
        selectors=SelectorSet(
            title='h1, .product-title, .title, [class*="title"]',
            description='.description, .product-description, [class*="description"]',
            price='.price, .product-price, [class*="price"]',
            original_price='.original-price, .was-price, [class*="original"]',
            images='.product-image img, .gallery img, [class*="image"] img',
            rating='.rating, .stars, [class*="rating"]',
            review_count='.reviews, .review-count, [class*="review"]',
            availability='.availability, .stock, [class*="stock"]',
            brand='.brand, .manufacturer, [class*="brand"]',
            category='.breadcrumb a, [class*="breadcrumb"] a',
        ),
        base_headers=_headers(),
        delay=2.0,
        retries=2,
        images=ImageHints(galleries='.product-image img, .gallery img, [class*="image"] img'),
    ),
}

_missing = set(Platform) - set(PLATFORM_CONFIGS)
if _missing:
    raise UnknownPlatformError(
        f"Platforms without configuration: {sorted(p.value for p in _missing)}"
    )

URL_SUGGESTIONS = {
    Platform.AMAZON: (
        "Make sure the URL is a product page (contains /dp/ or /gp/product/)",
        "Remove tracking parameters (ref=, tag=) for cleaner URLs",
    ),
    Platform.ALIBABA: (
        "Use product detail page URLs (contains /product-detail/)",
        "Avoid supplier store URLs for better results",
    ),
    Platform.ALIEXPRESS: (
        "Use individual product URLs (contains /item/)",
        "Avoid category or search result URLs",
    ),
    Platform.EBAY: ("Use individual listing URLs (contains /itm/)",),
    Platform.WALMART: ("Use individual product URLs (contains /ip/)",),
    Platform.SHOPIFY: ("Use individual product URLs (contains /products/)",),
    Platform.GENERIC: (
        "Unrecognised store: extraction is best-effort, prefer a single product page",
    ),
}


def parse_url(url):
    """
    Parse and sanity-check a product URL.

    Args:
        url (str): Candidate URL

    Returns:
        urllib.parse.ParseResult: The parsed URL

    Raises:
        InvalidUrlError: If the value is not an absolute http(s) URL with a host
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrlError(url)
    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError:
        raise InvalidUrlError(url)
    if parsed.scheme not in ("http", "https") or not hostname or " " in hostname:
        raise InvalidUrlError(url)
    return parsed


def is_shopify_store(hostname):
    return any(indicator in hostname for indicator in SHOPIFY_INDICATORS)


def detect_platform(url):
    """
    Classify a URL into one of the supported platforms.

    Matches the lowercased hostname against each platform's domain substrings
    in DOMAIN_PATTERNS order. Self-hosted storefronts are recognised by
    Shopify indicator hosts.

    Args:
        url (str): Product URL

    Returns:
        Platform: The matching platform, or Platform.GENERIC if none matched

    Raises:
        InvalidUrlError: If the URL cannot be parsed
    """
    hostname = parse_url(url).hostname.lower()
    for platform, patterns in DOMAIN_PATTERNS:
        if any(pattern in hostname for pattern in patterns):
            return platform
    return Platform.GENERIC


def validate_url(url):
    """Validate a URL and suggest how to improve its hit rate."""
    try:
        platform = detect_platform(url)
    except InvalidUrlError as e:
        return UrlValidationResult(valid=False, platform=None, error=e.reason)
    return UrlValidationResult(
        valid=True, platform=platform, suggestions=list(URL_SUGGESTIONS[platform])
    )


def get_config(platform):
    """
    Look up the static configuration for a platform.

    Raises:
        UnknownPlatformError: If the id is not part of the closed registry
    """
    try:
        return PLATFORM_CONFIGS[Platform(platform)]
    except (KeyError, ValueError):
        raise UnknownPlatformError(f"No configuration for platform {platform!r}")


def supported_platforms() -> Tuple[Platform, ...]:
    return tuple(PLATFORM_CONFIGS)
