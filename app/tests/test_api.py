"""API endpoint tests"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.core.errors import ConfigurationError
from app.main import create_app
from app.services.enhancement import EnhancementService
from app.tests.fakes import FakeEnricher, FakeSource, cex_records, dex_records


class TestAPI:
    """Test API endpoints"""

    @pytest.fixture
    def service(self, store):
        return EnhancementService(
            store=store,
            sources={"cex": FakeSource(cex_records(25)), "dex": FakeSource(dex_records(12))},
            enricher=FakeEnricher(enabled=False),
            batch_delay=0,
        )

    @pytest.fixture
    def client(self, service):
        """Create test client"""
        with TestClient(create_app(service=service)) as client:
            yield client

    def test_health_check(self, client):
        """Test health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["cex"]["exists"] is False

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["gemini_configured"] is False

    def test_cex_fees_cold_then_cached(self, client):
        """First call rebuilds the snapshot, the second is served from cache"""
        response = client.get("/api/cex-fees")
        assert response.status_code == 200
        body = response.json()
        assert body["cached"] is False
        assert body["batch"] == 1
        assert body["totalBatches"] == 3
        assert body["hasMore"] is True
        assert body["totalExchanges"] == 25
        assert len(body["data"]) == 10
        assert body["data"][0]["exchangeId"] == "ex0"
        assert body["data"][0]["makerFee"] is None
        assert "no-store" in response.headers["cache-control"]

        response = client.get("/api/cex-fees", params={"batch": 3, "batchSize": 10})
        body = response.json()
        assert body["cached"] is True
        assert body["hasMore"] is False
        assert len(body["data"]) == 5
        assert response.headers["cache-control"].startswith("public")

    def test_dex_fees(self, client):
        response = client.get("/api/dex-fees", params={"batchSize": 5})
        assert response.status_code == 200
        body = response.json()
        assert body["totalDEXes"] == 12
        assert body["totalBatches"] == 3
        assert body["data"][0]["dexId"] == "dex0"
        assert body["data"][0]["protocol"] == "AMM"

    def test_invalid_pagination(self, client):
        assert client.get("/api/cex-fees", params={"batch": 0}).status_code == 422
        assert client.get("/api/cex-fees", params={"batchSize": 0}).status_code == 422

    def test_non_get_is_rejected(self, client):
        assert client.post("/api/cex-fees").status_code == 405
        assert client.delete("/api/dex-fees").status_code == 405

    def test_metadata_failure_returns_500(self, store):
        service = EnhancementService(
            store=store,
            sources={
                "cex": FakeSource([], error=ConfigurationError("CoinMarketCap API key is not configured", "Set it")),
                "dex": FakeSource([]),
            },
            enricher=FakeEnricher(enabled=False),
        )
        with TestClient(create_app(service=service)) as client:
            response = client.get("/api/cex-fees")

        assert response.status_code == 500
        assert response.json() == {
            "error": "Configuration Error",
            "message": "CoinMarketCap API key is not configured. Set it",
        }
        assert store.snapshot("cex") is None

    def test_background_processing_flag(self, store):
        service = EnhancementService(
            store=store,
            sources={"cex": FakeSource(cex_records(5)), "dex": FakeSource([])},
            enricher=FakeEnricher(),
            batch_delay=0,
        )
        with TestClient(create_app(service=service)) as client:
            body = client.get("/api/cex-fees").json()

        assert body["backgroundProcessing"] is True

    def test_cache_status(self, client):
        client.get("/api/cex-fees")

        response = client.get("/api/cache-status")
        assert response.status_code == 200
        body = response.json()
        assert body["cex"]["exists"] is True
        assert body["cex"]["isValid"] is True
        assert body["cex"]["totalCount"] == 25
        assert body["dex"]["exists"] is False
        assert body["ai"]["circuitBreakerActive"] is False
        assert body["ai"]["geminiConfigured"] is False
        assert body["cacheDurations"]["cexHours"] == 72

    def test_ai_status(self, client):
        client.get("/api/cex-fees")

        body = client.get("/api/ai-status").json()
        assert body["cacheExists"] is True
        assert body["totalExchanges"] == 25
        assert body["enhancedExchanges"] == 0
        assert body["enhancementRate"] == "0.0%"

    def test_clear_cache(self, client, store):
        client.get("/api/cex-fees")
        client.get("/api/dex-fees")

        response = client.post("/api/clear-cache", params={"type": "cex"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["clearedItems"] == ["CEX cache"]
        assert store.snapshot("cex") is None
        assert store.snapshot("dex") is not None

        body = client.post("/api/clear-cache").json()
        assert body["clearedItems"] == ["DEX cache"]

        body = client.post("/api/clear-cache").json()
        assert body["message"] == "No cache data found to clear"

    def test_clear_cache_rejects_unknown_type(self, client):
        assert client.post("/api/clear-cache", params={"type": "everything"}).status_code == 422

    def test_enhance_fees_without_api_key(self, client):
        client.get("/api/cex-fees")

        response = client.post("/api/enhance-fees", params={"type": "cex"})
        assert response.status_code == 400
        assert response.json() == {"error": "Enhancement Not Started", "message": "GEMINI_API_KEY not configured"}

    def test_enhance_fees_rejects_unknown_type(self, client):
        assert client.post("/api/enhance-fees", params={"type": "nft"}).status_code == 422

    def test_enhance_fees_after_later_page_load(self, store):
        """A snapshot built by page 2 starts no run until enrichment is requested"""
        enricher = FakeEnricher()
        enricher.gate = asyncio.Event()
        service = EnhancementService(
            store=store,
            sources={"cex": FakeSource(cex_records(25)), "dex": FakeSource(dex_records(12))},
            enricher=enricher,
            batch_delay=0,
        )
        with TestClient(create_app(service=service)) as client:
            body = client.get("/api/cex-fees", params={"batch": 2}).json()
            assert body["backgroundProcessing"] is False
            assert enricher.calls == []

            response = client.post("/api/enhance-fees", params={"type": "cex"})
            assert response.status_code == 202
            body = response.json()
            assert body["success"] is True
            assert body["type"] == "cex"
            assert body["total"] == 25
            assert store.state("cex").is_processing is True

            response = client.post("/api/enhance-fees", params={"type": "cex"})
            assert response.status_code == 400
            assert response.json()["message"] == "CEX AI enhancement already in progress"

        assert store.state("cex").is_processing is False

    def test_enhance_fees_with_empty_cache(self, store):
        service = EnhancementService(
            store=store,
            sources={"cex": FakeSource([]), "dex": FakeSource([])},
            enricher=FakeEnricher(),
        )
        with TestClient(create_app(service=service)) as client:
            response = client.post("/api/enhance-fees", params={"type": "dex"})

        assert response.status_code == 400
        assert response.json()["message"] == "No DEX data in cache. Load the DEX fees first."

    def test_invalid_endpoint(self, client):
        """Test invalid endpoint returns 404"""
        response = client.get("/invalid")
        assert response.status_code == 404
