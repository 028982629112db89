import pytest

from stocksync.services.errors import (
    AuthError,
    PlatformAPIError,
    RateLimitError,
    TransientNetworkError,
)
from stocksync.services.order_fetcher import OrderFetcher

from fakes import PagedOrdersClient, SleepRecorder, platform_order


def _orders(count):
    return [platform_order(str(n)) for n in range(1, count + 1)]


def _fetcher(client, sleep=None, **overrides):
    options = dict(
        page_size=100,
        max_pages=10,
        page_delay=0.4,
        rate_limit_backoff=2.0,
        rate_limit_max_retries=5,
        transient_retry_delay=1.0,
        transient_max_retries=1,
    )
    options.update(overrides)
    return OrderFetcher(client, sleep=sleep or SleepRecorder(), **options)


@pytest.mark.asyncio
async def test_pagination_stops_at_first_short_page():
    client = PagedOrdersClient(_orders(250))
    sleep = SleepRecorder()

    result = await _fetcher(client, sleep).fetch_all_orders("tok")

    assert [page for _, page, _ in client.calls] == [1, 2, 3]
    assert len(result.orders) == 250
    assert result.pages_fetched == 3
    assert result.partial is False
    assert sleep.calls == [0.4, 0.4]


@pytest.mark.asyncio
async def test_empty_account_makes_a_single_call():
    client = PagedOrdersClient([])

    result = await _fetcher(client).fetch_all_orders("tok")

    assert len(client.calls) == 1
    assert result.orders == []


@pytest.mark.asyncio
async def test_page_cap_bounds_the_walk():
    client = PagedOrdersClient(_orders(500))

    result = await _fetcher(client, max_pages=3).fetch_all_orders("tok")

    assert len(client.calls) == 3
    assert len(result.orders) == 300


@pytest.mark.asyncio
async def test_failure_keeps_pages_already_collected():
    client = PagedOrdersClient(_orders(250), failures={2: PlatformAPIError("boom", status_code=500)})

    result = await _fetcher(client).fetch_all_orders("tok")

    assert len(result.orders) == 100
    assert result.partial is True
    assert result.error == "boom"


@pytest.mark.asyncio
async def test_single_401_refreshes_and_retries_same_page():
    client = PagedOrdersClient(_orders(150), failures={2: AuthError("expired", status_code=401)})
    refreshes = []

    async def refresh():
        refreshes.append(1)
        return "tok-2"

    result = await _fetcher(client).fetch_all_orders("tok-1", refresh_token=refresh)

    assert len(refreshes) == 1
    assert [(token, page) for token, page, _ in client.calls] == [("tok-1", 1), ("tok-1", 2), ("tok-2", 2)]
    assert len(result.orders) == 150
    assert result.access_token == "tok-2"


@pytest.mark.asyncio
async def test_second_401_on_same_page_raises():
    client = PagedOrdersClient(
        _orders(50),
        failures={1: AuthError("expired", status_code=401), 2: AuthError("revoked", status_code=401)},
    )
    refreshes = []

    async def refresh():
        refreshes.append(1)
        return "tok-2"

    with pytest.raises(AuthError):
        await _fetcher(client).fetch_all_orders("tok-1", refresh_token=refresh)
    assert len(refreshes) == 1


@pytest.mark.asyncio
async def test_401_without_refresh_callback_raises():
    client = PagedOrdersClient(_orders(5), failures={1: AuthError("expired", status_code=401)})

    with pytest.raises(AuthError):
        await _fetcher(client).fetch_all_orders("tok")


@pytest.mark.asyncio
async def test_rate_limit_waits_and_retries_same_page():
    client = PagedOrdersClient(_orders(20), failures={1: RateLimitError("slow down", status_code=429)})
    sleep = SleepRecorder()

    result = await _fetcher(client, sleep).fetch_all_orders("tok")

    assert [page for _, page, _ in client.calls] == [1, 1]
    assert sleep.calls == [2.0]
    assert len(result.orders) == 20
    assert result.partial is False


@pytest.mark.asyncio
async def test_rate_limit_budget_is_bounded():
    failures = {n: RateLimitError("slow down", status_code=429) for n in range(1, 10)}
    client = PagedOrdersClient(_orders(20), failures=failures)

    result = await _fetcher(client, rate_limit_max_retries=2).fetch_all_orders("tok")

    assert len(client.calls) == 3
    assert result.orders == []
    assert "Rate limit" in result.error


@pytest.mark.asyncio
async def test_transient_error_is_retried_once():
    client = PagedOrdersClient(_orders(20), failures={1: TransientNetworkError("reset")})
    sleep = SleepRecorder()

    result = await _fetcher(client, sleep).fetch_all_orders("tok")

    assert len(result.orders) == 20
    assert sleep.calls == [1.0]


@pytest.mark.asyncio
async def test_repeated_transient_errors_end_pagination():
    client = PagedOrdersClient(
        _orders(150),
        failures={2: TransientNetworkError("reset"), 3: TransientNetworkError("timeout")},
    )

    result = await _fetcher(client).fetch_all_orders("tok")

    assert len(result.orders) == 100
    assert result.error == "timeout"


@pytest.mark.asyncio
async def test_enrich_orders_fills_missing_items():
    orders = [
        platform_order("1", items=[{"codigo": "A"}]),
        platform_order("2"),
        platform_order("3"),
    ]
    client = PagedOrdersClient([], details={
        "2": {"id": "2", "itens": [{"codigo": "B", "quantidade": 2}]},
        "3": PlatformAPIError("not found", status_code=404),
    })
    sleep = SleepRecorder()

    enriched = await _fetcher(client, sleep).enrich_orders(orders, "tok")

    assert enriched == 1
    assert client.detail_calls == ["2", "3"]
    assert orders[1]["itens"] == [{"codigo": "B", "quantidade": 2}]
    assert orders[1]["contato"] == {"nome": "Maria Silva"}
    assert orders[2]["itens"] == []
    assert sleep.calls == [0.4]


@pytest.mark.asyncio
async def test_enrich_orders_waits_out_rate_limited_detail():
    orders = [platform_order("1", "Verificado")]
    client = PagedOrdersClient([], details={
        "1": [RateLimitError("slow down", status_code=429), {"id": "1", "itens": [{"codigo": "ABC", "quantidade": 2}]}],
    })
    sleep = SleepRecorder()

    enriched = await _fetcher(client, sleep).enrich_orders(orders, "tok")

    assert enriched == 1
    assert client.detail_calls == ["1", "1"]
    assert orders[0]["itens"] == [{"codigo": "ABC", "quantidade": 2}]
    assert sleep.calls == [2.0]


@pytest.mark.asyncio
async def test_detail_retries_network_errors_within_budget():
    client = PagedOrdersClient([], details={
        "1": [TransientNetworkError("reset"), {"id": "1", "itens": [{"codigo": "A"}]}],
        "2": TransientNetworkError("reset"),
    })
    sleep = SleepRecorder()
    fetcher = _fetcher(client, sleep)

    assert await fetcher.fetch_order_detail("1", "tok") == {"id": "1", "itens": [{"codigo": "A"}]}
    assert await fetcher.fetch_order_detail("2", "tok") is None
    assert client.detail_calls == ["1", "1", "2", "2"]
    assert sleep.calls == [1.0, 1.0]


@pytest.mark.asyncio
async def test_detail_rate_limit_budget_is_bounded():
    client = PagedOrdersClient([], details={"1": RateLimitError("slow down", status_code=429)})
    sleep = SleepRecorder()

    detail = await _fetcher(client, sleep, rate_limit_max_retries=2).fetch_order_detail("1", "tok")

    assert detail is None
    assert len(client.detail_calls) == 3
    assert sleep.calls == [2.0, 2.0]
