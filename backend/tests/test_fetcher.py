import asyncio

import httpx
import pytest

from fetcher import (
    FetchError,
    RateLimitExhausted,
    ResilientFetcher,
    backoff_delay,
    decode_json,
    parse_retry_after,
)

URL = "https://bulk.test/functions/generate-image"


def make_fetcher(responses, **kwargs):
    """Fetcher over a mock transport that replays `responses` in order (last one repeats)."""
    requests = []
    sleeps = []
    events = []

    def handler(request):
        requests.append(request)
        item = responses[min(len(requests) - 1, len(responses) - 1)]
        if isinstance(item, Exception):
            raise item
        return item

    async def fake_sleep(delay):
        sleeps.append(delay)

    def emit(event, **data):
        events.append((event, data))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = ResilientFetcher(client=client, sleep=fake_sleep, emit=emit, **kwargs)
    return fetcher, requests, sleeps, events


def test_backoff_grows_and_caps():
    assert backoff_delay(1) == 1.0
    assert backoff_delay(2) == 2.0
    assert backoff_delay(3) == 4.0
    assert backoff_delay(10) == 30.0


def test_rate_limited_twice_then_success_retries_with_backoff():
    fetcher, requests, sleeps, _ = make_fetcher([
        httpx.Response(429),
        httpx.Response(429),
        httpx.Response(200, json={"success": True}),
    ], max_retries=5)

    data = asyncio.run(fetcher.post_json(URL, {"prompt": "x"}, service="image"))

    assert data == {"success": True}
    assert len(requests) == 3
    assert sleeps == [1.0, 2.0]
    assert fetcher.indicator is None


def test_rate_limit_exhaustion_raises_after_max_attempts():
    fetcher, requests, sleeps, _ = make_fetcher([httpx.Response(429, text="slow down")])

    with pytest.raises(RateLimitExhausted) as exc:
        asyncio.run(fetcher.request("POST", URL, service="image"))

    assert exc.value.status == 429
    assert len(requests) == 3
    assert sleeps == [1.0, 2.0]


def test_retry_after_header_is_honoured_exactly():
    fetcher, _, sleeps, events = make_fetcher([
        httpx.Response(429, headers={"Retry-After": "7"}),
        httpx.Response(200, json={}),
    ])

    asyncio.run(fetcher.request("GET", URL, service="content"))

    assert sleeps == [7.0]
    assert ("rate_limit", {"service": "content", "message": "Rate limited, retrying in 7s"}) in events
    assert events[-1] == ("rate_limit", {"service": "content", "message": None})


def test_parse_retry_after_handles_missing_and_garbage():
    assert parse_retry_after(None) is None
    assert parse_retry_after("3") == 3.0
    assert parse_retry_after("-4") == 0.0


def test_server_error_is_not_retried_and_body_is_truncated():
    fetcher, requests, sleeps, _ = make_fetcher([httpx.Response(500, text="x" * 2000)])

    with pytest.raises(FetchError) as exc:
        asyncio.run(fetcher.request("POST", URL))

    assert exc.value.status == 500
    assert len(exc.value.body) == 500
    assert len(requests) == 1
    assert sleeps == []


def test_transport_error_is_retried_then_succeeds():
    fetcher, requests, sleeps, _ = make_fetcher([
        httpx.ConnectError("connection refused"),
        httpx.Response(200, json={"ok": 1}),
    ])

    data = asyncio.run(fetcher.get_json(URL))

    assert data == {"ok": 1}
    assert len(requests) == 2
    assert sleeps == [1.0]


def test_transport_error_reraised_after_last_attempt():
    fetcher, requests, _, _ = make_fetcher([httpx.ConnectError("down")])

    with pytest.raises(httpx.ConnectError):
        asyncio.run(fetcher.request("GET", URL))

    assert len(requests) == 3


def test_rate_limit_headers_are_tracked_per_service():
    fetcher, _, _, _ = make_fetcher([
        httpx.Response(200, json={}, headers={
            "X-RateLimit-Remaining": "12",
            "X-RateLimit-Limit": "100",
            "X-RateLimit-Reset": "1900000000",
        }),
    ])

    asyncio.run(fetcher.request("GET", URL, service="pricing"))

    state = fetcher.rate_limits["pricing"]
    assert state.remaining == 12
    assert state.limit == 100
    assert state.reset_time == 1900000000.0
    assert state.is_low
    assert state.to_dict()["warning"] is True


def test_invalid_json_raises_fetch_error():
    response = httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(FetchError, match="Invalid JSON response"):
        decode_json(response)
