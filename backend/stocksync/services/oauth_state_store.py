"""Pending OAuth authorization states.

``start-oauth`` stores a random state token together with the account and
user it belongs to; the callback pops it again. Entries expire after a TTL
and a background sweep removes abandoned flows. Deployments running several
instances can provide another ``OAuthStateStore`` backed by a shared cache.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Protocol

from stocksync.config import settings
from stocksync.utils.logger import logger


@dataclass(frozen=True)
class PendingOAuthState:
    account_id: str
    user_id: str
    created_at: float


class OAuthStateStore(Protocol):

    def issue(self, account_id: str, user_id: str) -> str:
        ...

    def pop(self, state: str) -> Optional[PendingOAuthState]:
        ...

    def sweep(self) -> int:
        ...


class InMemoryOAuthStateStore:
    """Process-local store, suitable for single-instance deployments."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.OAUTH_STATE_TTL_SECONDS
        self._clock = clock
        self._states: Dict[str, PendingOAuthState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def _expired(self, entry: PendingOAuthState) -> bool:
        return self._clock() - entry.created_at > self.ttl_seconds

    def issue(self, account_id: str, user_id: str) -> str:
        state = secrets.token_urlsafe(24)
        self._states[state] = PendingOAuthState(account_id=account_id, user_id=user_id, created_at=self._clock())
        return state

    def pop(self, state: str) -> Optional[PendingOAuthState]:
        entry = self._states.pop(state, None)
        if entry is None or self._expired(entry):
            return None
        return entry

    def sweep(self) -> int:
        expired = [key for key, entry in self._states.items() if self._expired(entry)]
        for key in expired:
            del self._states[key]
        return len(expired)


async def run_state_sweeper(
    store: OAuthStateStore,
    interval_seconds: Optional[int] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    interval = interval_seconds or settings.OAUTH_STATE_SWEEP_SECONDS
    while True:
        await sleep(interval)
        removed = store.sweep()
        if removed:
            logger.info(f"Removed {removed} expired OAuth states")


oauth_state_store = InMemoryOAuthStateStore()
