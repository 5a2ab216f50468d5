"""Tests for the resilient fetch layer."""

import asyncio
import json
import pytest
import aiohttp

from app.services.fetcher import (
    FetchError,
    FetchResponse,
    RateLimitError,
    UpstreamStatusError,
)
from app.services.proxy_pool import EndpointStatus

from conftest import RELAYS

A, B, C = RELAYS

URL = "https://api.example/coins"


class FakeTransport:
    """Replays scripted responses and records the relay used for each request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.endpoints = []

    async def __call__(self, url, endpoint, timeout, params, headers):
        self.endpoints.append(endpoint)
        outcome = self.responses.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        status, body = outcome
        return FetchResponse(status=status, body=body, url=url, endpoint=endpoint)


def ok(payload):
    return 200, json.dumps(payload)


class TestFetchJson:
    """JSON fetches with relay rotation."""

    async def test_direct_request_skips_relay(self, fetcher, probe):
        fetcher._send = FakeTransport(ok({"a": 1}))

        assert await fetcher.fetch_json(URL, use_relay=False) == {"a": 1}
        assert fetcher._send.endpoints == [None]
        probe.assert_not_awaited()

    async def test_relay_success_marks_endpoint_working(self, fetcher, proxy_pool):
        fetcher._send = FakeTransport(ok([1, 2]))

        assert await fetcher.fetch_json(URL, batch_index=1) == [1, 2]
        assert fetcher._send.endpoints == [B]
        assert proxy_pool.status(B) == EndpointStatus.WORKING

    async def test_relay_failure_demotes_and_retries_direct(self, fetcher, proxy_pool):
        fetcher._send = FakeTransport(aiohttp.ClientConnectionError("reset"), ok({"a": 1}))

        assert await fetcher.fetch_json(URL) == {"a": 1}
        assert fetcher._send.endpoints == [A, None]
        assert proxy_pool.status(A) == EndpointStatus.FAILED

    async def test_relay_timeout_demotes_and_retries_direct(self, fetcher, proxy_pool):
        fetcher._send = FakeTransport(asyncio.TimeoutError(), ok({"a": 1}))

        assert await fetcher.fetch_json(URL) == {"a": 1}
        assert proxy_pool.status(A) == EndpointStatus.FAILED

    async def test_rate_limit_retries_once_on_another_endpoint(self, fetcher, proxy_pool):
        fetcher._send = FakeTransport((429, "slow down"), ok({"a": 1}))

        assert await fetcher.fetch_json(URL) == {"a": 1}
        assert fetcher._send.endpoints == [A, B]
        assert proxy_pool.status(A) == EndpointStatus.FAILED

    async def test_html_error_page_is_treated_as_rate_limit(self, fetcher):
        fetcher._send = FakeTransport((503, "<!DOCTYPE html><html>blocked</html>"), ok({"a": 1}))

        assert await fetcher.fetch_json(URL) == {"a": 1}
        assert len(fetcher._send.endpoints) == 2

    async def test_second_rate_limit_raises(self, fetcher):
        fetcher._send = FakeTransport((429, ""), (429, ""))

        with pytest.raises(RateLimitError):
            await fetcher.fetch_json(URL, label="page 2")
        assert len(fetcher._send.endpoints) == 2

    async def test_error_status_raises_with_status(self, fetcher):
        fetcher._send = FakeTransport((404, "not found"))

        with pytest.raises(UpstreamStatusError) as exc_info:
            await fetcher.fetch_json(URL, use_relay=False)
        assert exc_info.value.status == 404

    @pytest.mark.parametrize("status,body", [(502, "Bad Gateway"), (403, "Forbidden"), (500, "internal error")])
    async def test_relayed_error_status_demotes_endpoint(self, fetcher, proxy_pool, status, body):
        fetcher._send = FakeTransport((status, body))

        with pytest.raises(UpstreamStatusError) as exc_info:
            await fetcher.fetch_json(URL)
        assert exc_info.value.status == status
        assert fetcher._send.endpoints == [A]
        assert proxy_pool.status(A) == EndpointStatus.FAILED

    async def test_relayed_not_found_keeps_endpoint(self, fetcher, proxy_pool):
        fetcher._send = FakeTransport((404, '{"error":"coin not found"}'))

        with pytest.raises(UpstreamStatusError):
            await fetcher.fetch_json(URL)
        assert proxy_pool.status(A) == EndpointStatus.WORKING

    async def test_next_fetch_avoids_demoted_endpoint(self, fetcher, proxy_pool):
        fetcher._send = FakeTransport((502, "Bad Gateway"), ok({"a": 1}))

        with pytest.raises(UpstreamStatusError):
            await fetcher.fetch_json(URL)
        assert await fetcher.fetch_json(URL) == {"a": 1}
        assert fetcher._send.endpoints[1] != A

    async def test_undecodable_body_raises(self, fetcher):
        fetcher._send = FakeTransport((200, "not json"))

        with pytest.raises(UpstreamStatusError):
            await fetcher.fetch_json(URL, use_relay=False)

    async def test_direct_timeout_is_a_fetch_error(self, fetcher):
        fetcher._send = FakeTransport(asyncio.TimeoutError())

        with pytest.raises(FetchError, match="Timed out"):
            await fetcher.fetch_json(URL, use_relay=False, timeout=5)


class TestFetchText:
    """Text documents are always fetched direct."""

    async def test_returns_body(self, fetcher):
        fetcher._send = FakeTransport((200, "<rss/>"))

        assert await fetcher.fetch_text(URL) == "<rss/>"
        assert fetcher._send.endpoints == [None]

    async def test_error_status_raises(self, fetcher):
        fetcher._send = FakeTransport((500, "oops"))

        with pytest.raises(UpstreamStatusError):
            await fetcher.fetch_text(URL)


class TestFetchResponse:

    def test_rate_limit_detection(self):
        assert FetchResponse(429, "", URL).is_rate_limited
        assert FetchResponse(502, "<html>edge</html>", URL).is_rate_limited
        assert not FetchResponse(502, '{"error": "bad gateway"}', URL).is_rate_limited
        assert not FetchResponse(200, "<html></html>", URL).is_rate_limited
