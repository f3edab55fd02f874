"""
Apify actor runner shared by the Amazon and Walmart scrapers
"""
import logging
from typing import Any, Dict, List, Optional

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_delay, wait_fixed

from app.core.exceptions import ProviderError, ProviderTimeoutError
from app.services.sources.base import SourceAdapter

logger = logging.getLogger(__name__)

APIFY_BASE_URL = "https://api.apify.com/v2"


class _RunPending(Exception):
    """Actor run has not finished yet."""


class ApifyActorMixin:
    """Start Apify actor runs and collect their dataset items."""

    poll_interval: float = 3.0

    async def run_actor(self: SourceAdapter, actor_id: str, run_input: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Start an asynchronous run, wait for it to finish, then download the dataset."""
        token = self.settings.APIFY_API_TOKEN
        run = await self.request_json(
            "POST",
            f"{APIFY_BASE_URL}/acts/{actor_id}/runs",
            params={"token": token},
            json=run_input,
        )
        run_id = ((run or {}).get("data") or {}).get("id")
        if not run_id:
            raise ProviderError("Apify did not return a run id", provider=self.name)

        logger.info(f"[{self.name}] Started run {run_id}, waiting for completion...")
        dataset_id = await self.wait_for_run(run_id)

        items = await self.request_json(
            "GET",
            f"{APIFY_BASE_URL}/datasets/{dataset_id}/items",
            params={"token": token, "format": "json"},
        )
        return items if isinstance(items, list) else []

    async def wait_for_run(self: SourceAdapter, run_id: str) -> str:
        """Poll run status until SUCCEEDED; return the default dataset id."""
        token = self.settings.APIFY_API_TOKEN
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_delay(self.settings.APIFY_RUN_TIMEOUT_SECONDS),
                wait=wait_fixed(self.poll_interval),
                retry=retry_if_exception_type(_RunPending),
            ):
                with attempt:
                    data = await self.request_json(
                        "GET",
                        f"{APIFY_BASE_URL}/actor-runs/{run_id}",
                        params={"token": token},
                    )
                    run = (data or {}).get("data") or {}
                    status = run.get("status")
                    if status == "SUCCEEDED":
                        return run.get("defaultDatasetId")
                    if status in ("FAILED", "ABORTED", "TIMED-OUT"):
                        raise ProviderError(f"Apify run {status}", provider=self.name)
                    raise _RunPending(status)
        except RetryError as e:
            raise ProviderTimeoutError("Apify run timed out", provider=self.name) from e

    async def run_actor_sync(
        self: SourceAdapter,
        actor_id: str,
        run_input: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Run an actor synchronously and return its dataset items in one call."""
        items = await self.request_json(
            "POST",
            f"{APIFY_BASE_URL}/acts/{actor_id}/run-sync-get-dataset-items",
            params={"token": self.settings.APIFY_API_TOKEN},
            json=run_input,
            timeout=timeout,
        )
        return items if isinstance(items, list) else []
