# tests/test_images.py
from scraper.images import (
    canonical_image_id,
    dedupe_images,
    embedded_image_urls,
    extract_images,
    parse_dynamic_image_map,
    upgrade_resolution,
)
from scraper.models import Platform
from scraper.normalizer import normalize_images
from scraper.platforms import get_config
from fakes import AMAZON_STATIC_HTML


def test_canonical_id_collapses_resolution_variants():
    amazon_small = "https://m.media-amazon.com/images/I/71mainIMG._AC_US40_.jpg"
    amazon_large = "https://images-na.ssl-images-amazon.com/images/I/71mainIMG._AC_SL1500_.jpg"
    assert canonical_image_id(amazon_small) == canonical_image_id(amazon_large)

    alibaba_thumb = "https://s.alicdn.com/@sc04/kf/H1234.jpg_350x350.jpg"
    alibaba_full = "https://s.alicdn.com/@sc04/kf/H1234.jpg"
    assert canonical_image_id(alibaba_thumb) == canonical_image_id(alibaba_full)

    assert canonical_image_id("https://cdn.example.com/a/mug-600x600.jpg?v=2") == "/a/mug"


def test_canonical_id_keeps_distinct_photos_apart():
    assert canonical_image_id("https://cdn.example.com/a/front.jpg") != canonical_image_id(
        "https://cdn.example.com/a/back.jpg"
    )


def test_upgrade_resolution():
    assert (
        upgrade_resolution("https://m.media-amazon.com/images/I/71x._AC_SX300_SY300_.jpg", "amazon")
        == "https://m.media-amazon.com/images/I/71x._AC_SL1500_.jpg"
    )
    assert (
        upgrade_resolution("https://s.alicdn.com/kf/H1.jpg_350x350.jpg", "alibaba")
        == "https://s.alicdn.com/kf/H1.jpg_800x800.jpg"
    )
    assert upgrade_resolution("https://cdn.example.com/a.jpg", None) == "https://cdn.example.com/a.jpg"


def test_dedupe_prefers_higher_resolution_in_first_seen_slot():
    urls = [
        "https://cdn.example.com/front_200x200.jpg",
        "https://cdn.example.com/back.jpg",
        "https://cdn.example.com/front_1200x1200.jpg",
    ]
    assert dedupe_images(urls) == [
        "https://cdn.example.com/front_1200x1200.jpg",
        "https://cdn.example.com/back.jpg",
    ]


def test_parse_dynamic_image_map_orders_by_area():
    raw = (
        "{&quot;https://x.com/small.jpg&quot;:[100,100],"
        "&quot;https://x.com/big.jpg&quot;:[1500,1500],"
        "&quot;https://x.com/mid.jpg&quot;:[600,600]}"
    )
    assert parse_dynamic_image_map(raw) == [
        "https://x.com/big.jpg",
        "https://x.com/mid.jpg",
        "https://x.com/small.jpg",
    ]
    assert parse_dynamic_image_map("{not json") == []
    assert parse_dynamic_image_map(None) == []


def test_embedded_image_urls():
    html = '<script>var data = {"hiRes":"https:\\/\\/m.media-amazon.com\\/images\\/I\\/91z.jpg","thumb":"x"};</script>'
    assert embedded_image_urls(html) == ["https://m.media-amazon.com/images/I/91z.jpg"]


def test_extract_images_amazon_snapshot():
    """
    Test image extraction against an Amazon product page snapshot.

    Asserts:
        - Thumbnails, the main image and its dynamic map yield two distinct photos
        - Every kept URL is upgraded to the SL1500 variant
        - The transparent placeholder pixel is skipped
    """
    hints = get_config(Platform.AMAZON).images
    images = extract_images(AMAZON_STATIC_HTML, hints)
    assert images == [
        "https://m.media-amazon.com/images/I/71mainIMG._AC_SL1500_.jpg",
        "https://m.media-amazon.com/images/I/81sideIMG._AC_SL1500_.jpg",
    ]


def test_extract_images_respects_platform_limit():
    imgs = "".join(
        f'<div class="gallery"><img src="https://cdn.example.com/p{i}.jpg"></div>' for i in range(12)
    )
    html = f"<html><body>{imgs}</body></html>"
    config = get_config(Platform.GENERIC)
    images = extract_images(html, config.images, config.selectors.images)
    assert len(images) == 8
    assert images[0] == "https://cdn.example.com/p0.jpg"


def test_extract_images_required_substring():
    html = """
    <div class="main-image">
      <img src="https://s.alicdn.com/alibaba/H1.jpg_350x350.jpg">
      <img src="https://ads.example.com/banner.jpg">
    </div>
    """
    images = extract_images(html, get_config(Platform.ALIBABA).images)
    assert images == ["https://s.alicdn.com/alibaba/H1.jpg_800x800.jpg"]


def test_shopify_size_variants_collapse_to_largest():
    """
    Test that Shopify's width-only, height-only and named size suffixes are
    recognised as variants of one photo.

    Asserts:
        - All four URLs share a canonical id
        - Only the 1024x1024 variant survives normalisation
    """
    base = "https://cdn.shopify.com/s/files/1/0001/products/"
    variants = [
        base + "shirt_800x.jpg?v=1",
        base + "shirt_1024x1024.jpg?v=1",
        base + "shirt_large.jpg?v=1",
        base + "shirt_x400.jpg?v=1",
    ]

    assert len({canonical_image_id(url) for url in variants}) == 1
    assert normalize_images(variants) == [base + "shirt_1024x1024.jpg?v=1"]


def test_shopify_named_sizes_rank_by_pixels():
    base = "https://cdn.shopify.com/s/files/1/0001/products/"
    assert dedupe_images([base + "mug_small.png", base + "mug_grande_crop_center.png"]) == [
        base + "mug_grande_crop_center.png"
    ]
    assert canonical_image_id(base + "mug_front.png") != canonical_image_id(base + "mug_back.png")
