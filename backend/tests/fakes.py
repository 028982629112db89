"""Test doubles for the platform client and token manager."""

from typing import Any, Dict, List, Optional

from stocksync.services.errors import AuthError


def platform_order(order_id, status_name=None, *, code=None, items=None, number=None, **extra):
    """Order payload shaped like the platform's /pedidos/vendas entries."""
    situacao: Dict[str, Any] = {}
    if code is not None:
        situacao["id"] = code
    if status_name is not None:
        situacao["nome"] = status_name
    payload = {
        "id": order_id,
        "numero": number or order_id,
        "data": "2024-03-05",
        "total": 59.9,
        "contato": {"nome": "Maria Silva"},
        "situacao": situacao,
        "itens": items if items is not None else [],
    }
    payload.update(extra)
    return payload


def item(sku=None, quantity=1, **extra):
    payload = {"quantidade": quantity}
    if sku is not None:
        payload["codigo"] = sku
    payload.update(extra)
    return payload


class SleepRecorder:

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


async def no_sleep(_seconds: float) -> None:
    return None


class PagedOrdersClient:
    """Serves ``orders`` in pages; ``failures`` maps a call number to an exception.

    A ``details`` entry may be a list, answered one element per call (the last
    one repeats). Exceptions are raised instead of returned.
    """

    def __init__(self, orders: List[Dict[str, Any]], failures: Optional[Dict[int, Exception]] = None, details=None):
        self.orders = orders
        self.failures = dict(failures or {})
        self.details = details or {}
        self.calls: List[tuple] = []
        self.filters: List[Optional[Dict[str, Any]]] = []
        self.detail_calls: List[str] = []

    async def list_orders(self, access_token, page, limit, filters=None):
        self.calls.append((access_token, page, limit))
        self.filters.append(filters)
        failure = self.failures.pop(len(self.calls), None)
        if failure is not None:
            raise failure
        start = (page - 1) * limit
        return [dict(o) for o in self.orders[start:start + limit]]

    async def get_order(self, access_token, order_id):
        self.detail_calls.append(order_id)
        detail = self.details.get(order_id)
        if isinstance(detail, list):
            detail = detail.pop(0) if len(detail) > 1 else detail[0]
        if isinstance(detail, Exception):
            raise detail
        return detail


class FakeTokens:
    """Stands in for TokenManager; ``failing`` holds account ids whose token cannot be obtained."""

    def __init__(self, token: str = "access-1", refreshed: str = "access-2", failing=()):
        self.token = token
        self.refreshed = refreshed
        self.failing = set(failing)
        self.refreshes = 0

    async def ensure_valid_token(self, db, account):
        if account.id in self.failing:
            raise AuthError("Token expired or revoked. Reconnect the account.")
        return self.token

    async def force_refresh(self, db, account):
        self.refreshes += 1
        return self.refreshed
