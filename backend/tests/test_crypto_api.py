"""Tests for the OHLC passthrough."""

import pytest
from unittest.mock import AsyncMock, Mock

from app.main import app
from app.services.fetcher import FetchError, UpstreamStatusError
from app.services.ohlc import OhlcService

CANDLES = [[1700000000000, 35000.0, 35200.0, 34900.0, 35100.0], [1700001800000, 35100.0, 35300.0, 35050.0, 35250.0]]


class TestOhlcService:

    def service(self, response):
        fetcher = Mock()
        fetcher.fetch_json = AsyncMock(return_value=response)
        return OhlcService(fetcher, "https://cg.example/api/v3")

    async def test_candles_passed_through(self):
        service = self.service(CANDLES)

        assert await service.fetch("bitcoin", days=7) == CANDLES

        call = service.fetcher.fetch_json.await_args
        assert call.args[0] == "https://cg.example/api/v3/coins/bitcoin/ohlc"
        assert call.kwargs["params"] == {"vs_currency": "usd", "days": 7}

    async def test_non_list_body(self):
        service = self.service({"error": "coin not found"})

        with pytest.raises(UpstreamStatusError) as exc:
            await service.fetch("bitcoin")

        assert "invalid OHLC data format" in str(exc.value)


class TestOhlcApi:

    async def test_success(self, client):
        app.state.ohlc.fetch = AsyncMock(return_value=CANDLES)

        response = await client.get("/api/crypto/ohlc/bitcoin", params={"days": 7})

        assert response.status_code == 200
        assert response.json() == {"success": True, "coin_id": "bitcoin", "days": 7, "data": CANDLES}
        app.state.ohlc.fetch.assert_awaited_once_with("bitcoin", 7)

    async def test_default_one_day(self, client):
        app.state.ohlc.fetch = AsyncMock(return_value=[])

        response = await client.get("/api/crypto/ohlc/bitcoin")

        assert response.json()["days"] == 1

    async def test_unknown_coin(self, client):
        app.state.ohlc.fetch = AsyncMock(side_effect=UpstreamStatusError(404, "CoinGecko OHLC nope: HTTP 404"))

        response = await client.get("/api/crypto/ohlc/nope")

        assert response.status_code == 404
        assert response.json()["detail"] == "Unknown coin: nope"

    @pytest.mark.parametrize("error", [UpstreamStatusError(500, "HTTP 500"), FetchError("all relays failed")])
    async def test_upstream_failure(self, client, error):
        app.state.ohlc.fetch = AsyncMock(side_effect=error)

        response = await client.get("/api/crypto/ohlc/bitcoin")

        assert response.status_code == 502

    @pytest.mark.parametrize("days", [0, 366])
    async def test_days_out_of_range(self, client, days):
        response = await client.get("/api/crypto/ohlc/bitcoin", params={"days": days})

        assert response.status_code == 422
