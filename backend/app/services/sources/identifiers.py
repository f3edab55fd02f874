"""
Identifier normalization

Product URLs are reduced to the provider's canonical id before any adapter
sees them. Anything that does not normalize is rejected here, before a
network call is made.
"""
import re
from urllib.parse import urlparse

from app.core.exceptions import InvalidIdentifierError


_ASIN_RE = re.compile(r"^[A-Z0-9]{10}$")
_ASIN_URL_PATTERNS = [
    re.compile(r"/dp/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/gp/product/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/product/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
    re.compile(r"/ASIN/([A-Z0-9]{10})(?:[/?#]|$)", re.IGNORECASE),
]

_AMAZON_DOMAINS = [
    "amazon.ca",
    "amazon.co.uk",
    "amazon.de",
    "amazon.fr",
    "amazon.es",
    "amazon.it",
    "amazon.co.jp",
    "amazon.in",
    "amazon.com.au",
    "amazon.com.mx",
]

_WALMART_URL_RE = re.compile(r"/ip/(?:[^/?#]+/)?([A-Za-z0-9]+)(?:[/?#]|$)")
_WALMART_ID_RE = re.compile(r"^[A-Za-z0-9]+$")

_SHOPIFY_URL_RE = re.compile(r"/products/([A-Za-z0-9][A-Za-z0-9_-]*)(?:[/?#]|$)")
_SHOPIFY_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


def _clean(value: str) -> str:
    if value is None:
        raise InvalidIdentifierError("Identifier is required")
    cleaned = str(value).strip()
    if not cleaned:
        raise InvalidIdentifierError("Identifier is required")
    return cleaned


def normalize_amazon_identifier(value: str) -> str:
    """Return the 10-character ASIN for an ASIN or Amazon product URL."""
    cleaned = _clean(value)

    if "/" not in cleaned:
        asin = cleaned.upper()
        if _ASIN_RE.match(asin):
            return asin
        raise InvalidIdentifierError(f"'{cleaned}' is not a valid Amazon ASIN")

    for pattern in _ASIN_URL_PATTERNS:
        match = pattern.search(cleaned)
        if match:
            return match.group(1).upper()

    raise InvalidIdentifierError(
        "Could not extract an ASIN from the URL. Please provide an Amazon product URL containing /dp/<ASIN>."
    )


def detect_amazon_domain(value: str) -> str:
    lowered = (value or "").lower()
    for domain in _AMAZON_DOMAINS:
        if domain in lowered:
            return domain
    return "amazon.com"


def normalize_walmart_identifier(value: str) -> str:
    """Return the Walmart item id for an id or a /ip/<slug>/<id> URL."""
    cleaned = _clean(value)

    if "/" not in cleaned:
        if _WALMART_ID_RE.match(cleaned):
            return cleaned
        raise InvalidIdentifierError(f"'{cleaned}' is not a valid Walmart product id")

    host = urlparse(cleaned if "://" in cleaned else f"https://{cleaned}").netloc.lower()
    if host and "walmart." not in host:
        raise InvalidIdentifierError("Invalid Walmart URL. Please provide a walmart.com or walmart.ca product URL.")

    match = _WALMART_URL_RE.search(cleaned)
    if not match:
        raise InvalidIdentifierError(
            "Could not extract product ID from URL. Please provide a valid Walmart product URL."
        )
    return match.group(1)


def detect_walmart_domain(value: str) -> str:
    return "walmart.ca" if "walmart.ca" in (value or "").lower() else "walmart.com"


def normalize_shopify_identifier(value: str) -> str:
    """Return a Shopify product handle or numeric id."""
    cleaned = _clean(value)

    if "/" in cleaned:
        match = _SHOPIFY_URL_RE.search(cleaned)
        if not match:
            raise InvalidIdentifierError("Could not extract a product handle from the Shopify URL.")
        return match.group(1).lower()

    if _SHOPIFY_ID_RE.match(cleaned):
        return cleaned.lower()
    raise InvalidIdentifierError(f"'{cleaned}' is not a valid Shopify product handle or id")


def normalize_mailbox_identifier(value: str) -> str:
    cleaned = _clean(value)
    if any(ch.isspace() for ch in cleaned):
        raise InvalidIdentifierError(f"'{cleaned}' is not a valid mailbox id")
    return cleaned
