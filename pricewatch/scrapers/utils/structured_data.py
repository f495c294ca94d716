"""schema.org Product extraction from embedded JSON-LD blocks."""

import json
from typing import Any, Dict, Iterator, Optional

import structlog
from bs4 import BeautifulSoup

from .normalizer import clean_text

logger = structlog.get_logger(__name__)


def _iter_nodes(data: Any) -> Iterator[Dict[str, Any]]:
    """Walk a JSON-LD document yielding every object node."""
    if isinstance(data, list):
        for item in data:
            yield from _iter_nodes(item)
    elif isinstance(data, dict):
        yield data
        graph = data.get("@graph")
        if graph is not None:
            yield from _iter_nodes(graph)


def _is_product(node: Dict[str, Any]) -> bool:
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return "Product" in node_type
    return node_type == "Product"


def find_product(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    """Return the first schema.org Product node embedded in the page.

    Malformed JSON-LD blocks are skipped.
    """
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        payload = script.string or script.get_text()
        if not payload or not payload.strip():
            continue
        try:
            data = json.loads(payload)
        except ValueError as e:
            logger.debug("json_ld_parse_failed", error=str(e))
            continue
        for node in _iter_nodes(data):
            if _is_product(node):
                return node
    return None


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = clean_text(str(value))
    return text or None


def _image_url(value: Any) -> Optional[str]:
    value = _first(value)
    if isinstance(value, dict):
        value = value.get("url") or value.get("contentUrl")
    return _as_text(value)


def product_fields(product: Dict[str, Any]) -> Dict[str, str]:
    """Flatten a Product node into the raw string fields extractors use.

    Keys present only when the node supplies them: ``title``, ``price``,
    ``currency``, ``rating``, ``rating_count``, ``image_url``,
    ``category``, ``sku``.
    """
    fields: Dict[str, Optional[str]] = {
        "title": _as_text(product.get("name")),
        "image_url": _image_url(product.get("image")),
        "sku": _as_text(product.get("sku") or product.get("productID")),
    }

    category = product.get("category")
    if isinstance(category, dict):
        category = category.get("name")
    fields["category"] = _as_text(_first(category))

    offers = _first(product.get("offers"))
    if isinstance(offers, dict):
        price = offers.get("price")
        if price is None:
            price = offers.get("lowPrice")
        if price is None and isinstance(offers.get("priceSpecification"), dict):
            price = offers["priceSpecification"].get("price")
        fields["price"] = _as_text(price)
        fields["currency"] = _as_text(offers.get("priceCurrency"))

    rating = product.get("aggregateRating")
    if isinstance(rating, dict):
        fields["rating"] = _as_text(rating.get("ratingValue"))
        fields["rating_count"] = _as_text(rating.get("reviewCount") or rating.get("ratingCount"))

    return {key: value for key, value in fields.items() if value}


def extract_product_fields(soup: BeautifulSoup) -> Dict[str, str]:
    """Product fields from JSON-LD, or an empty dict if none are usable.

    A Product node counts only if it yields a title or a price.
    """
    product = find_product(soup)
    if product is None:
        return {}
    fields = product_fields(product)
    if "title" not in fields and "price" not in fields:
        return {}
    return fields
