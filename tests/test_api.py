"""
API Tests — api_layer.py endpoints through FastAPI's TestClient.

Each test gets a fresh in-memory repository so records never leak to disk.
"""

import pytest
from fastapi.testclient import TestClient

from api_layer import _state, app
from config import Settings
from ingestion_orchestrator import IngestionOrchestrator, InMemoryStrainRepository


@pytest.fixture
def client():
    with TestClient(app) as c:
        _state.repo = InMemoryStrainRepository()
        _state.ingestion = IngestionOrchestrator(_state.repo, _state.extractor)
        yield c


def _create(client, **body):
    return client.post("/api/strains", json=body)

# ============================================================================
# Health
# ============================================================================


class TestHealth:
    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["records"] == 0
        assert "uptimeSeconds" in body

    def test_timing_header(self, client):
        assert "X-Response-Time-Ms" in client.get("/healthz").headers

# ============================================================================
# Extraction
# ============================================================================


class TestExtractEndpoints:
    def test_extract(self, client, wedding_cake_text):
        resp = client.post("/api/extract", json={"text": wedding_cake_text})
        assert resp.status_code == 200
        body = resp.json()
        assert body["strainName"] == "Wedding Cake"
        assert body["type"] == "Hybrid"
        assert body["dominantTerpene"] == "myrcene"
        assert body["otherTerpenes"] == ["limonene", "caryophyllene"]
        assert body["thc"]["totalPercent"] == 23.0

    def test_extract_empty(self, client):
        body = client.post("/api/extract", json={"text": ""}).json()
        assert body["strainName"] is None
        assert body["otherTerpenes"] == []
        assert body["thc"]["totalPercent"] is None
        assert body["thc"]["source"] == "none"

    def test_extract_uses_source_uri(self, client):
        body = client.post("/api/extract", json={
            "text": "Myrcene 1.2%",
            "sourceUri": "https://lab.example.com/coa/sour-diesel.pdf",
        }).json()
        assert body["strainName"] == "Sour Diesel"

    def test_debug_terps(self, client):
        resp = client.post("/api/debug/terps",
                           json={"text": "Terpene Result (mg/g)\nMyrcene 8.5"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["defaultUnit"] == "mg/g"
        assert body["terpenes"] == ["myrcene"]
        assert body["records"][0]["percent"] == pytest.approx(0.85)
        assert body["preview"] == ["Terpene Result (mg/g)", "Myrcene 8.5"]

# ============================================================================
# Strains
# ============================================================================


class TestStrains:
    def test_scan_saves_record(self, client, wedding_cake_text):
        resp = client.post("/api/scan", json={
            "text": wedding_cake_text,
            "sourceUri": "https://lab.example.com/coa/778.pdf",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["saved"] is True
        assert body["strain"]["id"] == "778"
        assert body["strain"]["name"] == "Wedding Cake"
        assert body["strain"]["thc"] == 23
        assert body["strain"]["dominantTerpene"] == "Myrcene"

        listing = client.get("/api/strains")
        assert listing.headers["X-Total-Count"] == "1"
        assert [r["id"] for r in listing.json()] == ["778"]

    def test_scan_requires_text(self, client):
        assert client.post("/api/scan", json={"text": "  "}).status_code == 400

    def test_create(self, client):
        resp = _create(client, name="Blue Dream", thc=21.6, type="Sativa",
                       terpenes=["myrcene", "alpha-pinene"])
        assert resp.status_code == 201
        body = resp.json()
        assert body["id"] == "bluedream"
        assert body["thc"] == 22
        assert body["bucket"] == "sativa_leaning"
        assert body["lean"] == "Sativa-leaning"
        assert body["terpenes"] == ["Myrcene", "Alpha-Pinene"]
        assert body["dominantTerpene"] == "Myrcene"

    def test_create_accepts_loose_input(self, client):
        resp = _create(client, name="Gelato", thc="22%", terpenes="Myrcene; Limonene")
        assert resp.status_code == 201
        body = resp.json()
        assert body["thc"] == 22
        assert body["terpenes"] == ["Myrcene", "Limonene"]

    def test_create_requires_name(self, client):
        assert _create(client, name="").status_code == 400
        assert _create(client, thc=20).status_code == 400

    def test_get_case_insensitive(self, client):
        _create(client, name="Blue Dream")
        resp = client.get("/api/strains/BLUEDREAM")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Blue Dream"

    def test_get_missing(self, client):
        assert client.get("/api/strains/nope").status_code == 404

    def test_list_newest_first_with_paging(self, client):
        for name in ["Alpha", "Bravo", "Charlie"]:
            _create(client, name=name)
        resp = client.get("/api/strains", params={"offset": 1, "limit": 1})
        assert resp.headers["X-Total-Count"] == "3"
        assert [r["name"] for r in resp.json()] == ["Bravo"]

        everything = client.get("/api/strains").json()
        assert [r["name"] for r in everything] == ["Charlie", "Bravo", "Alpha"]

    def test_limit_clamped_to_at_least_one(self, client):
        _create(client, name="Alpha")
        _create(client, name="Bravo")
        resp = client.get("/api/strains", params={"limit": 0})
        assert len(resp.json()) == 1

    def test_default_listing_capped(self, client, monkeypatch):
        monkeypatch.setattr(_state, "settings", Settings(max_list_limit=2))
        for name in ["Alpha", "Bravo", "Charlie"]:
            _create(client, name=name)
        resp = client.get("/api/strains")
        assert resp.headers["X-Total-Count"] == "3"
        assert [r["name"] for r in resp.json()] == ["Charlie", "Bravo"]

    def test_upsert_replaces_by_id(self, client):
        _create(client, name="Gelato", thc=20)
        _create(client, name="Gelato", thc=25)
        body = client.get("/api/strains").json()
        assert len(body) == 1
        assert body[0]["thc"] == 25
