"""API tests for dataset endpoints."""

import time
import pytest
from unittest.mock import AsyncMock

from app.main import app
from app.services.fetcher import FetchError
from app.services.sources import Dataset


class TestReadDataset:

    async def test_missing_document(self, client):
        response = await client.get("/api/cache/crypto_list")

        assert response.status_code == 404

    async def test_stored_document(self, client):
        await app.state.documents.put("fear_greed", {"value": 40}, last_update=1700000000000)

        response = await client.get("/api/cache/fear_greed")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "fear_greed"
        assert data["data"] == {"value": 40}
        assert data["lastUpdate"] == 1700000000000
        assert data["updatedAt"] is not None


class TestTriggerUpdate:

    async def test_successful_update(self, client):
        app.state.updates.sources[Dataset.CURRENCY_RATES].fetch = AsyncMock(return_value={"USD": 1.0, "EUR": 0.9})

        response = await client.post("/api/currency_rates/update")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "dataset": "currency_rates",
            "count": 2,
            "message": "2 records stored",
        }
        stored = await client.get("/api/cache/currency_rates")
        assert stored.json()["data"]["EUR"] == 0.9

    async def test_update_is_idempotent(self, client):
        app.state.updates.sources[Dataset.FEAR_GREED].fetch = AsyncMock(return_value={"value": 40})

        first = await client.post("/api/fear_greed/update")
        second = await client.post("/api/fear_greed/update")

        assert first.json() == second.json()
        assert (await client.get("/api/cache/fear_greed")).json()["data"] == {"value": 40}

    async def test_unknown_dataset(self, client):
        response = await client.post("/api/weather/update")

        assert response.status_code == 404
        assert "Unknown dataset" in response.json()["detail"]

    async def test_failed_update_is_bad_gateway(self, client):
        app.state.updates.sources[Dataset.NEWS].fetch = AsyncMock(side_effect=FetchError("no feed answered"))

        response = await client.post("/api/news/update")

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["success"] is False
        assert detail["dataset"] == "news"
        assert "no feed answered" in detail["message"]

    async def test_supply_tracking_from_stored_listing(self, client):
        await app.state.documents.put("crypto_list", [{"id": "alpha", "circulating_supply": 100}])

        response = await client.post("/api/supply_tracking/update")

        assert response.status_code == 200
        assert response.json()["count"] == 1


class TestSupplySnapshots:

    async def test_unknown_coin(self, client):
        response = await client.get("/api/supply-snapshots/alpha")

        assert response.status_code == 404

    async def test_history(self, client):
        now_ms = int(time.time() * 1000)
        await app.state.snapshots.upsert("2099-01-01-0000", now_ms - 1000, {"alpha": 100, "bravo": 1})
        await app.state.snapshots.upsert("2099-01-01-0005", now_ms, {"alpha": 101})

        response = await client.get("/api/supply-snapshots/alpha", params={"limit": 10})

        assert response.status_code == 200
        assert [point["supply"] for point in response.json()] == [100, 101]

    async def test_limit_validated(self, client):
        response = await client.get("/api/supply-snapshots/alpha", params={"limit": 0})

        assert response.status_code == 422


class TestStatus:

    async def test_scheduler_status(self, client):
        response = await client.get("/api/scheduler/status")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert set(data["jobs"]) == {"core", "sentiment", "news", "trending"}
        assert data["jobs"]["core"]["interval_minutes"] == 5
        assert data["jobs"]["core"]["armed"] is False
        assert data["proxies"]["pool_size"] > 0
        assert data["sources"]["fed_rate"]["healthy"] is True

    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["docs"] == "/docs"
