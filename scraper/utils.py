# scraper/utils.py
import hashlib
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def get_logger(name):
    """
    Return a named INFO logger with a single stream handler attached.

    Modules sharing a name share the logger, so the handler is only added
    the first time.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger


def compute_hash_for_product(product_dict):
    """
    Generate a deterministic SHA-256 hash for a product's content fields.

    Two scrapes of the same page that extracted the same data hash to the
    same value, which lets the store upsert instead of duplicating.

    Args:
        product_dict (dict): Product fields, as produced by ``model_dump()``

    Returns:
        str: Hexadecimal SHA-256 hash string (64 characters)

    Note:
        Fields are concatenated with "|" in a fixed order. Missing fields
        default to empty string.
    """
    keys = [
        "source_url",
        "title",
        "description",
        "price",
        "original_price",
        "currency",
        "images",
        "rating",
        "review_count",
        "brand",
        "availability",
        "provenance",
    ]
    s = "|".join(str(product_dict.get(k, "")) for k in keys)
    return hashlib.sha256(s.encode("utf-8")).hexdigest()
