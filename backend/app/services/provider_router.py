"""
Provider Fallback Router

One primary/secondary adapter pair per marketplace (Amazon, Walmart US).

Policy:
1. A provider with missing credentials is skipped, never attempted
2. Primary raises or times out -> try the secondary
3. Primary returns zero items -> that is the answer, no fallthrough
4. Both fail -> the primary's error, wrapped with a fallback marker
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from app.core.config import settings
from app.core.exceptions import (
    ConfigurationError,
    FallbackExhaustedError,
    IngestionError,
    ProviderError,
    ProviderTimeoutError,
)
from app.services.sources.base import FetchOptions, FetchResult, RawItem, SourceAdapter

logger = logging.getLogger(__name__)


@dataclass
class RoutedFetch:
    """Fetch result plus which provider answered."""
    items: List[RawItem] = field(default_factory=list)
    product_name: Optional[str] = None
    served_by: str = ""
    fallback_used: bool = False


class ProviderFallbackRouter:

    def __init__(
        self,
        primary: SourceAdapter,
        secondary: Optional[SourceAdapter] = None,
        timeout: Optional[float] = None,
    ):
        self.primary = primary
        self.secondary = secondary
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS

    async def _call(self, adapter: SourceAdapter, identifier: str, options: FetchOptions) -> FetchResult:
        try:
            return await asyncio.wait_for(adapter.fetch(identifier, options), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"No response within {self.timeout:.0f}s", provider=adapter.name
            ) from e
        except IngestionError:
            raise
        except Exception as e:
            # Unexpected adapter bug: classify it so the router can fall back
            raise ProviderError(str(e), provider=adapter.name) from e

    async def fetch_with_fallback(self, identifier: str, options: FetchOptions) -> RoutedFetch:
        primary_error: Optional[IngestionError] = None
        primary_attempted = False

        if self.primary.is_configured():
            primary_attempted = True
            try:
                result = await self._call(self.primary, identifier, options)
                logger.info(
                    f"[Router] {self.primary.name} served {identifier} ({len(result.items)} items)"
                )
                return RoutedFetch(
                    items=result.items,
                    product_name=result.product_name,
                    served_by=self.primary.name,
                )
            except IngestionError as e:
                primary_error = e
                logger.warning(f"[Router] {self.primary.name} failed for {identifier}: {e}")
        else:
            logger.info(f"[Router] {self.primary.name} not configured, skipping")

        if self.secondary is None or not self.secondary.is_configured():
            if primary_error is not None:
                if self.secondary is None:
                    raise primary_error
                raise FallbackExhaustedError(
                    primary_error,
                    ConfigurationError("not configured", provider=self.secondary.name),
                )
            names = " or ".join(a.name for a in (self.primary, self.secondary) if a is not None)
            raise ConfigurationError(f"No review provider configured ({names})")

        logger.info(f"[Router] Falling back to {self.secondary.name} for {identifier}")
        try:
            result = await self._call(self.secondary, identifier, options)
        except IngestionError as e:
            logger.error(f"[Router] {self.secondary.name} also failed for {identifier}: {e}")
            if primary_attempted:
                raise FallbackExhaustedError(primary_error, e) from e
            raise FallbackExhaustedError(e) from e

        logger.info(
            f"[Router] {self.secondary.name} served {identifier} ({len(result.items)} items, fallback used)"
        )
        return RoutedFetch(
            items=result.items,
            product_name=result.product_name,
            served_by=self.secondary.name,
            fallback_used=True,
        )
