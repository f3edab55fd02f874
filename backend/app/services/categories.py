"""
Standardized review categories

The model is asked to pick one of twelve labels but may answer with free
text ("late shipment", "Sizing issues", "general"). normalize_category maps
any label onto exactly one standardized category; it is deterministic and
total, so ingestion and analytics always agree on the bucket.
"""
import re
from typing import List, Optional, Tuple


PRODUCT_QUALITY = "Product Quality"
PRODUCT_PERFORMANCE = "Product Performance"
SHIPPING_DELIVERY = "Shipping & Delivery"
PACKAGING = "Packaging"
CUSTOMER_SERVICE = "Customer Service"
VALUE_PRICING = "Value & Pricing"
SIZING_FIT = "Sizing & Fit"
COLOR_APPEARANCE = "Color & Appearance"
SETUP_INSTRUCTIONS = "Setup & Instructions"
COMPATIBILITY = "Compatibility"
SAFETY_CONCERN = "Safety Concern"
PRAISE_SATISFACTION = "Praise & Satisfaction"

STANDARD_CATEGORIES: Tuple[str, ...] = (
    PRODUCT_QUALITY,
    PRODUCT_PERFORMANCE,
    SHIPPING_DELIVERY,
    PACKAGING,
    CUSTOMER_SERVICE,
    VALUE_PRICING,
    SIZING_FIT,
    COLOR_APPEARANCE,
    SETUP_INSTRUCTIONS,
    COMPATIBILITY,
    SAFETY_CONCERN,
    PRAISE_SATISFACTION,
)

DEFAULT_CATEGORY = PRODUCT_PERFORMANCE

_EXACT = {c.lower(): c for c in STANDARD_CATEGORIES}

# First match wins. Safety outranks everything; the broad quality and
# performance buckets come last so specific concerns are not swallowed.
_KEYWORD_RULES: List[Tuple[str, "re.Pattern[str]"]] = [
    (SAFETY_CONCERN, re.compile(r"\b(safety|safe|unsafe|hazard\w*|danger\w*|burn\w*|fire|injur\w*|toxic|shock\w*|choking)\b")),
    (SHIPPING_DELIVERY, re.compile(r"\b(ship\w*|deliver\w*|transit|courier|arriv\w*|late|delay\w*|tracking|wrong item)\b")),
    (PACKAGING, re.compile(r"\b(packag\w*|box|boxes|wrapp\w*|missing (part|parts|component|components|piece|pieces))\b")),
    (CUSTOMER_SERVICE, re.compile(r"\b(service|support|staff|agent|rep|representative|communication|refund\w*|return\w*|warranty)\b")),
    (VALUE_PRICING, re.compile(r"\b(pric\w*|value|cost\w*|expensive|overpriced|cheap|money|worth|afford\w*)\b")),
    (SIZING_FIT, re.compile(r"\b(siz\w*|fit|fits|fitting|tight|loose|too small|too big|too large)\b")),
    (COLOR_APPEARANCE, re.compile(r"\b(colou?r\w*|appearance|look|looks|design|style|aesthetic\w*|photo\w*|picture)\b")),
    (SETUP_INSTRUCTIONS, re.compile(r"\b(setup|set up|install\w*|instruction\w*|assembl\w*|manual|directions)\b")),
    (COMPATIBILITY, re.compile(r"\b(compatib\w*|incompatib\w*|works with|integrat\w*|connect\w*|pair\w*)\b")),
    (PRAISE_SATISFACTION, re.compile(r"\b(prais\w*|satisf\w*|love\w*|great|excellent|amazing|happy|delight\w*|recommend\w*|positive|compliment\w*)\b")),
    (PRODUCT_QUALITY, re.compile(r"\b(quality|defect\w*|broke|broken|break\w*|durab\w*|material\w*|build|built|craftsmanship|flimsy|damag\w*|cheaply)\b")),
    (PRODUCT_PERFORMANCE, re.compile(r"\b(perform\w*|function\w*|work\w*|malfunction\w*|battery|speed|feature\w*|stopped)\b")),
]


def normalize_category(label: Optional[str]) -> str:
    """
    Map a free-text category label onto one of STANDARD_CATEGORIES.

    Standard labels pass through (case-insensitively); anything else is
    matched by keyword, and unmatched or empty labels fall back to
    "Product Performance".
    """
    if not label:
        return DEFAULT_CATEGORY

    cleaned = " ".join(str(label).split()).lower()
    if cleaned in _EXACT:
        return _EXACT[cleaned]

    # Treat "and" and "&" alike so "shipping and delivery" still matches
    cleaned = cleaned.replace("&", " and ")
    for category, pattern in _KEYWORD_RULES:
        if pattern.search(cleaned):
            return category

    return DEFAULT_CATEGORY
