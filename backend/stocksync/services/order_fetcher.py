"""Paginated order retrieval from the external platform.

Pagination walks ``pagina=1..ORDERS_MAX_PAGES`` with ``limite=ORDERS_PAGE_SIZE``
and stops at the first short page. Per-page failure handling:

- 429: wait ``RATE_LIMIT_BACKOFF_SECONDS`` and retry the same page
  (bounded by ``RATE_LIMIT_MAX_RETRIES``).
- 401: call the refresh callback once and retry the same page; a second 401
  for the same page raises AuthError.
- timeout / connection reset: retry the same page after a short delay, up to
  ``TRANSIENT_MAX_RETRIES`` times.
- anything else, or an exhausted retry budget: stop and return what was
  collected together with the error message. Earlier pages are never
  discarded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from stocksync.config import settings
from stocksync.services.errors import (
    AuthError,
    PlatformAPIError,
    RateLimitError,
    TransientNetworkError,
)
from stocksync.services.platform_client import PlatformClient, platform_client
from stocksync.utils.logger import logger

Sleep = Callable[[float], Awaitable[None]]
TokenRefresher = Callable[[], Awaitable[str]]


@dataclass
class FetchResult:
    orders: List[Dict[str, Any]] = field(default_factory=list)
    pages_fetched: int = 0
    error: Optional[str] = None
    # The token in use when pagination finished; differs from the input
    # token when a 401 triggered a refresh.
    access_token: Optional[str] = None

    @property
    def partial(self) -> bool:
        return self.error is not None


class OrderFetcher:

    def __init__(
        self,
        client: Optional[PlatformClient] = None,
        *,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        page_delay: Optional[float] = None,
        rate_limit_backoff: Optional[float] = None,
        rate_limit_max_retries: Optional[int] = None,
        transient_retry_delay: Optional[float] = None,
        transient_max_retries: Optional[int] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client or platform_client
        self.page_size = page_size or settings.ORDERS_PAGE_SIZE
        self.max_pages = max_pages or settings.ORDERS_MAX_PAGES
        self.page_delay = settings.PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self.rate_limit_backoff = settings.RATE_LIMIT_BACKOFF_SECONDS if rate_limit_backoff is None else rate_limit_backoff
        self.rate_limit_max_retries = (
            settings.RATE_LIMIT_MAX_RETRIES if rate_limit_max_retries is None else rate_limit_max_retries
        )
        self.transient_retry_delay = (
            settings.TRANSIENT_RETRY_DELAY_SECONDS if transient_retry_delay is None else transient_retry_delay
        )
        self.transient_max_retries = (
            settings.TRANSIENT_MAX_RETRIES if transient_max_retries is None else transient_max_retries
        )
        self._sleep = sleep

    async def fetch_all_orders(
        self,
        access_token: str,
        refresh_token: Optional[TokenRefresher] = None,
        filters: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
    ) -> FetchResult:
        """Walk the order listing. ``filters`` go to the platform as query
        parameters; ``max_pages`` overrides the page cap for this walk only.
        """
        page_cap = max_pages or self.max_pages
        result = FetchResult(access_token=access_token)
        page = 1
        rate_limit_retries = 0
        transient_retries = 0
        refreshed_for_page = False

        while page <= page_cap:
            try:
                orders = await self.client.list_orders(result.access_token, page, self.page_size, filters)
            except RateLimitError as e:
                rate_limit_retries += 1
                if rate_limit_retries > self.rate_limit_max_retries:
                    result.error = f"Rate limit persisted on page {page}: {e.message}"
                    logger.warning(result.error)
                    break
                logger.info(f"Rate limited on page {page}, waiting {self.rate_limit_backoff}s")
                await self._sleep(self.rate_limit_backoff)
                continue
            except AuthError as e:
                if refreshed_for_page or refresh_token is None:
                    logger.error(f"Platform rejected access token on page {page} after refresh")
                    raise AuthError(f"Access token rejected: {e.message}", status_code=e.status_code)
                logger.info(f"Access token rejected on page {page}, refreshing")
                result.access_token = await refresh_token()
                refreshed_for_page = True
                continue
            except TransientNetworkError as e:
                transient_retries += 1
                if transient_retries > self.transient_max_retries:
                    result.error = e.message
                    logger.warning(f"Giving up on page {page} after network errors: {e.message}")
                    break
                logger.info(f"Network error on page {page}, retrying: {e.message}")
                await self._sleep(self.transient_retry_delay)
                continue
            except PlatformAPIError as e:
                result.error = e.message
                logger.warning(f"Order listing failed on page {page}: {e.message}")
                break

            result.orders.extend(orders)
            result.pages_fetched += 1
            logger.info(f"Page {page}: {len(orders)} orders (total {len(result.orders)})")

            if len(orders) < self.page_size:
                break

            page += 1
            rate_limit_retries = 0
            transient_retries = 0
            refreshed_for_page = False
            if page <= page_cap:
                await self._sleep(self.page_delay)
        else:
            logger.warning(f"Order pagination stopped at the {page_cap}-page cap")

        return result

    async def fetch_order_detail(self, order_id: str, access_token: str) -> Optional[Dict[str, Any]]:
        """Full order payload, or None when the detail call fails.

        Rate limits and network errors are retried with the same budgets as
        the listing; anything else gives up at once.
        """
        rate_limit_retries = 0
        transient_retries = 0
        while True:
            try:
                return await self.client.get_order(access_token, str(order_id))
            except RateLimitError as e:
                rate_limit_retries += 1
                if rate_limit_retries > self.rate_limit_max_retries:
                    logger.warning(f"Rate limit persisted loading order {order_id}: {e.message}")
                    return None
                logger.info(f"Rate limited loading order {order_id}, waiting {self.rate_limit_backoff}s")
                await self._sleep(self.rate_limit_backoff)
            except TransientNetworkError as e:
                transient_retries += 1
                if transient_retries > self.transient_max_retries:
                    logger.warning(f"Giving up on order {order_id} after network errors: {e.message}")
                    return None
                await self._sleep(self.transient_retry_delay)
            except (AuthError, PlatformAPIError) as e:
                logger.warning(f"Could not load detail for order {order_id}: {e.message}")
                return None

    async def enrich_orders(self, orders: List[Dict[str, Any]], access_token: str) -> int:
        """Replace list entries lacking line items with their detail payload.

        Returns the number of orders enriched.
        """
        enriched = 0
        calls = 0
        for index, order in enumerate(orders):
            if not isinstance(order, dict) or order.get("itens") or order.get("id") is None:
                continue
            if calls:
                await self._sleep(self.page_delay)
            calls += 1
            detail = await self.fetch_order_detail(order["id"], access_token)
            if detail and detail.get("itens"):
                orders[index] = {**order, **detail}
                enriched += 1
        return enriched
