from fastapi.testclient import TestClient

from app.cache.store import InMemoryCacheStore
from app.core.exceptions import CacheUnavailable
from app.main import app


class UnreachableStore(InMemoryCacheStore):
    """Every call fails as if the cache host were down."""

    def get(self, key):
        raise CacheUnavailable("connection refused")

    def set(self, key, value, ttl):
        raise CacheUnavailable("connection refused")

    def delete(self, *keys):
        raise CacheUnavailable("connection refused")

    def delete_by_prefix(self, prefix):
        raise CacheUnavailable("connection refused")

    def delete_all(self):
        raise CacheUnavailable("connection refused")

    def stats(self):
        raise CacheUnavailable("connection refused")


def test_clear_cache_requires_admin(client: TestClient, customer_headers):
    assert client.delete("/api/v1/admin/cache").status_code == 401
    assert client.delete("/api/v1/admin/cache", headers=customer_headers).status_code == 403


def test_clear_cache_drops_every_entry(client: TestClient, admin_headers, make_category, cache_store):
    make_category("Hair Care")
    client.get("/api/v1/categories")
    client.get("/api/v1/products")
    assert len(cache_store.keys()) == 2

    response = client.delete("/api/v1/admin/cache", headers=admin_headers)

    assert response.json()["data"] == {"deleted": 2, "available": True}
    assert cache_store.keys() == []
    assert client.get("/api/v1/categories").json()["meta"]["from_cache"] is False


def test_cache_stats(client: TestClient, admin_headers):
    client.get("/api/v1/products")
    client.get("/api/v1/products")

    stats = client.get("/api/v1/admin/cache/stats", headers=admin_headers).json()["data"]

    assert stats["available"] is True
    assert stats["backend"] == "memory"
    assert stats["total_keys"] == 1
    assert stats["cache_hits"] == 1


def test_reads_are_served_from_the_store_when_cache_is_down(client: TestClient, make_product):
    make_product("Rose Serum")
    app.state.cache_store = UnreachableStore()

    first = client.get("/api/v1/products/rose-serum")
    second = client.get("/api/v1/products/rose-serum")

    assert first.status_code == second.status_code == 200
    assert first.json()["meta"]["from_cache"] is False
    assert second.json()["meta"]["from_cache"] is False
    assert first.json()["data"] == second.json()["data"]


def test_writes_succeed_and_schedule_retry_when_cache_is_down(client: TestClient, make_product, monkeypatch):
    scheduled = []
    monkeypatch.setattr("app.api.deps.schedule_invalidation_retry", scheduled.append)
    app.state.cache_store = UnreachableStore()

    product = make_product("Rose Serum")

    assert product["slug"] == "rose-serum"
    # one retry for the shelf category, one for the product
    assert len(scheduled) == 2
    assert "products-listing:" in scheduled[1]
    assert "product-by-slug:rose-serum" in scheduled[1]


def test_admin_cache_endpoints_report_unavailable_cache(client: TestClient, admin_headers):
    app.state.cache_store = UnreachableStore()

    cleared = client.delete("/api/v1/admin/cache", headers=admin_headers).json()["data"]
    stats = client.get("/api/v1/admin/cache/stats", headers=admin_headers).json()["data"]

    assert cleared == {"deleted": 0, "available": False}
    assert stats == {"available": False}


def test_health_reports_degraded_cache(client: TestClient):
    assert client.get("/health/cache").json()["status"] == "healthy"

    app.state.cache_store = UnreachableStore()

    assert client.get("/health/cache").json()["status"] == "degraded"


def test_errors_carry_kind_and_correlation_id(client: TestClient):
    response = client.get("/api/v1/products/no-such-product", headers={"X-Correlation-ID": "req-42"})

    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"
    assert response.json()["success"] is False
    assert response.headers["X-Correlation-ID"] == "req-42"
