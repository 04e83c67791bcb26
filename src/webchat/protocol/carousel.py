"""Carousel parser — product cards embedded in bot message text.

The agent backend sends e-commerce results inline, as a markup block inside
an ordinary text message:

    Here are some options:
    <carousel>
      <product id="42">
        <name>Trail Shoe</name>
        <price>R$ 199,90</price>
        <original_price>R$ 249,90</original_price>
        <discount_percentage>20</discount_percentage>
        <image>https://cdn.example.com/42.jpg</image>
        <link>https://shop.example.com/p/42</link>
      </product>
    </carousel>

Parsing strategy:
  Agents emit this markup from templates, so it is frequently not well-formed
  XML (bare ampersands in URLs, stray prose). We use a lightweight regex
  approach that tolerates that, instead of an XML parser.
"""

from __future__ import annotations

import html
import logging
import re

from webchat.models import CarouselProduct

logger = logging.getLogger(__name__)

_CAROUSEL_BLOCK_RE = re.compile(r"<carousel\b[^>]*>(.*?)</carousel\s*>", re.IGNORECASE | re.DOTALL)
_CAROUSEL_OPEN_RE = re.compile(r"<carousel\b[^>]*>", re.IGNORECASE)
_CAROUSEL_CLOSE_RE = re.compile(r"</carousel\s*>", re.IGNORECASE)

_PRODUCT_RE = re.compile(r"<product\b([^>]*)>(.*?)</product\s*>", re.IGNORECASE | re.DOTALL)
_FIELD_RE = re.compile(r"<([a-zA-Z_]+)\b[^>]*>(.*?)</\1\s*>", re.DOTALL)
_ATTR_RE = re.compile(r"""([a-zA-Z_]+)\s*=\s*["']([^"']*)["']""")
_NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)?")

# Accepted tag spellings → canonical field name
_FIELD_ALIASES = {
    "id": "id",
    "name": "name",
    "title": "name",
    "price": "price",
    "original_price": "original_price",
    "originalprice": "original_price",
    "discount_percentage": "discount_percentage",
    "discountpercentage": "discount_percentage",
    "discount": "discount_percentage",
    "image": "image_url",
    "image_url": "image_url",
    "imageurl": "image_url",
    "link": "product_link",
    "url": "product_link",
    "product_link": "product_link",
    "productlink": "product_link",
    "description": "description",
}


def detect(text: str | None) -> bool:
    """True if ``text`` contains an opening and a closing carousel tag."""
    if not text:
        return False
    return bool(_CAROUSEL_OPEN_RE.search(text) and _CAROUSEL_CLOSE_RE.search(text))


def parse(text: str | None) -> list[CarouselProduct]:
    """Extract products in document order. Malformed markup yields []."""
    if not detect(text):
        return []

    products: list[CarouselProduct] = []
    for block in _CAROUSEL_BLOCK_RE.finditer(text):
        for match in _PRODUCT_RE.finditer(block.group(1)):
            product = _parse_product(match.group(1), match.group(2), len(products) + 1)
            if product is not None:
                products.append(product)

    if not products:
        logger.debug("Carousel markup without usable products")
    return products


def extract_remaining_text(text: str | None) -> str:
    """Return ``text`` with carousel blocks removed, prose preserved."""
    if not text:
        return ""
    remaining = _CAROUSEL_BLOCK_RE.sub("", text)
    remaining = re.sub(r"[ \t]+\n", "\n", remaining)
    remaining = re.sub(r"\n{3,}", "\n\n", remaining)
    return remaining.strip()


def _parse_product(attrs: str, body: str, position: int) -> CarouselProduct | None:
    fields: dict[str, str] = {}

    for key, value in _ATTR_RE.findall(attrs):
        canonical = _FIELD_ALIASES.get(key.lower())
        if canonical:
            fields[canonical] = _clean(value)

    for tag, value in _FIELD_RE.findall(body):
        canonical = _FIELD_ALIASES.get(tag.lower())
        if canonical and canonical not in fields:
            fields[canonical] = _clean(value)

    name = fields.get("name")
    if not name:
        return None

    return CarouselProduct(
        id=fields.get("id") or f"product_{position}",
        name=name,
        price=fields.get("price", ""),
        image_url=fields.get("image_url", ""),
        product_link=fields.get("product_link", ""),
        original_price=fields.get("original_price") or None,
        discount_percentage=_parse_discount(fields.get("discount_percentage")),
        description=fields.get("description") or None,
    )


def _clean(value: str) -> str:
    # CDATA wrappers are common in templated markup
    value = re.sub(r"^\s*<!\[CDATA\[(.*)\]\]>\s*$", r"\1", value, flags=re.DOTALL)
    return html.unescape(value).strip()


def _parse_discount(value: str | None) -> float | None:
    if not value:
        return None
    match = _NUMBER_RE.search(value)
    if not match:
        return None
    return float(match.group(0).replace(",", "."))
