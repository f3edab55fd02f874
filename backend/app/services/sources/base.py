"""
Source adapter contract

Each adapter fetches raw feedback for one origin and hands back the single
RawItem shape. All provider-specific field probing stays inside that
adapter's map_item; nothing downstream knows which provider served a batch.
"""
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import (
    ConfigurationError,
    ProviderAuthError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
)

logger = logging.getLogger(__name__)


class RawItem(BaseModel):
    """Uniform item returned by every source adapter."""
    external_id: Optional[str] = None
    text: str
    title: Optional[str] = None
    author_name: str = "Anonymous"
    author_email: Optional[str] = None
    rating: Optional[int] = Field(None, ge=0, le=5)
    timestamp: datetime
    timestamp_known: bool = True       # False when the provider gave no usable date
    verified: Optional[bool] = None

    @field_validator("external_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        # Providers send numeric ids as often as string ones
        if value is None or isinstance(value, str):
            return value
        return str(value)


class FetchOptions(BaseModel):
    """Per-call fetch options."""
    max_items: int = 50
    full_sync: bool = False
    domain: Optional[str] = None       # marketplace domain, e.g. amazon.ca / walmart.ca
    since: Optional[datetime] = None   # email sync window


class FetchResult(BaseModel):
    """Items plus the product name the provider reported, if any."""
    items: List[RawItem] = Field(default_factory=list)
    product_name: Optional[str] = None


_DATE_FORMATS = ["%B %d, %Y", "%Y-%m-%d", "%d %B %Y", "%b %d, %Y", "%d/%m/%Y", "%m/%d/%Y"]
_REVIEWED_ON_RE = re.compile(r"\bon\s+(.+)$", re.IGNORECASE)


def parse_timestamp(value: Any, default: Optional[datetime] = None) -> datetime:
    """
    Parse a provider date into an aware UTC datetime.

    Accepts ISO-8601 strings, epoch seconds/milliseconds, the common
    human formats, and Amazon's "Reviewed in ... on January 5, 2024".
    Falls back to `default` (or now) when nothing parses.
    """
    parsed = _parse_date_value(value)
    if parsed is None:
        return default or datetime.now(timezone.utc)
    return parsed


def timestamp_fields(value: Any) -> Dict[str, Any]:
    """RawItem keyword arguments for a provider date: the timestamp and whether it was real."""
    parsed = _parse_date_value(value)
    if parsed is None:
        return {"timestamp": datetime.now(timezone.utc), "timestamp_known": False}
    return {"timestamp": parsed, "timestamp_known": True}


def _parse_date_value(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    match = _REVIEWED_ON_RE.search(text)
    if match:
        text = match.group(1).strip()

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    logger.debug(f"Unparseable date '{value}', using fallback")
    return None


def coerce_rating(value: Any) -> Optional[int]:
    """Round a provider rating ("4.0 out of 5 stars", 4.6, "5") to an int in 0-5."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        match = re.search(r"\d+(?:\.\d+)?", value)
        if not match:
            return None
        value = match.group(0)
    try:
        rating = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(0, min(5, rating))


def first_value(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first non-empty value among `keys`."""
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return default


class SourceAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses declare `name`, `marketplace` and `required_settings`, and
    implement fetch() and map_item(). An adapter whose required settings are
    missing reports is_configured() == False and is never called.
    """

    name: str = "source"
    marketplace: str = ""
    required_settings: Tuple[str, ...] = ()

    def __init__(self, client: Optional[httpx.AsyncClient] = None, app_settings: Optional[Settings] = None):
        self.client = client
        self.settings = app_settings or default_settings

    def is_configured(self) -> bool:
        return all(getattr(self.settings, key, None) for key in self.required_settings)

    def require_configured(self):
        missing = [key for key in self.required_settings if not getattr(self.settings, key, None)]
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} is not configured", provider=self.name)

    @abstractmethod
    async def fetch(self, identifier: str, options: FetchOptions) -> FetchResult:
        """Fetch raw items for a normalized identifier."""

    @abstractmethod
    def map_item(self, payload: Dict[str, Any]) -> Optional[RawItem]:
        """Map one provider payload onto RawItem; None when it is not a review."""

    def map_items(self, payloads: List[Dict[str, Any]], max_items: Optional[int] = None) -> List[RawItem]:
        items = []
        for payload in payloads or []:
            if not isinstance(payload, dict):
                continue
            try:
                item = self.map_item(payload)
            except ValidationError as e:
                # One malformed row is dropped, the rest of the batch still imports
                logger.warning(f"[{self.name}] Skipping malformed payload: {e.error_count()} field error(s)")
                continue
            if item is not None:
                items.append(item)
        if max_items is not None:
            items = items[:max_items]
        return items

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Optional[Any]:
        """
        Issue one HTTP call and classify failures.

        Returns the decoded JSON body, or None for 404 (not found is a
        zero-result outcome, not an error).
        """
        request_timeout = timeout or self.settings.PROVIDER_TIMEOUT_SECONDS
        try:
            if self.client is not None:
                response = await self.client.request(
                    method, url, params=params, json=json, headers=headers, timeout=request_timeout
                )
            else:
                async with httpx.AsyncClient(timeout=request_timeout) as client:
                    response = await client.request(method, url, params=params, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Request timed out: {e}", provider=self.name) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Request failed: {e}", provider=self.name) from e

        status = response.status_code
        if status == 404:
            logger.info(f"[{self.name}] Not found: {url}")
            return None
        if status in (401, 403):
            raise ProviderAuthError(
                f"API authentication failed ({status}). Please verify your credentials.",
                provider=self.name,
            )
        if status in (402, 429):
            raise RateLimitError(
                f"API rate or usage limit exceeded ({status}). Try again later.",
                provider=self.name,
            )
        if status >= 400:
            raise ProviderError(
                f"API request failed with status {status}: {response.text[:200]}",
                provider=self.name,
                status_code=status,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON response: {e}", provider=self.name) from e
