from datetime import datetime

import pytest

from app.cache.namespaces import CATEGORIES_MAIN, PRODUCT_BY_SLUG, PRODUCTS_LISTING
from app.cache.resolver import ReadThroughResolver
from app.cache.store import InMemoryCacheStore
from app.core.config import settings
from app.core.exceptions import CacheUnavailable


class DownStore(InMemoryCacheStore):
    def get(self, key):
        raise CacheUnavailable("get refused")

    def set(self, key, value, ttl):
        raise CacheUnavailable("set refused")


class CountingLoader:
    def __init__(self, payload):
        self.payload = payload
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.payload


def test_miss_then_hit_returns_identical_payload(clock):
    resolver = ReadThroughResolver(InMemoryCacheStore(clock=clock))
    loader = CountingLoader({"items": [{"name": "Rose Serum", "created_at": datetime(2024, 5, 1, 9, 30)}]})

    first, first_cached = resolver.resolve(PRODUCTS_LISTING, ("all", None, None, None, None, 1, 12), loader)
    second, second_cached = resolver.resolve(PRODUCTS_LISTING, ("all", None, None, None, None, 1, 12), loader)

    assert (first_cached, second_cached) == (False, True)
    assert first == second
    assert first["items"][0]["created_at"] == "2024-05-01T09:30:00"
    assert loader.calls == 1


def test_entry_expires_after_namespace_ttl(clock):
    resolver = ReadThroughResolver(InMemoryCacheStore(clock=clock))
    loader = CountingLoader(["hair-care"])

    resolver.resolve(CATEGORIES_MAIN, (), loader)
    clock.advance(settings.CACHE_CATEGORY_TTL - 1)
    assert resolver.resolve(CATEGORIES_MAIN, (), loader)[1] is True

    clock.advance(1)
    assert resolver.resolve(CATEGORIES_MAIN, (), loader)[1] is False
    assert loader.calls == 2


def test_cache_outage_degrades_to_store_reads(clock):
    resolver = ReadThroughResolver(DownStore(clock=clock))
    loader = CountingLoader({"slug": "rose-serum"})

    for _ in range(3):
        payload, from_cache = resolver.resolve(PRODUCT_BY_SLUG, ("rose-serum",), loader)
        assert payload == {"slug": "rose-serum"}
        assert from_cache is False

    assert loader.calls == 3


def test_corrupt_entry_is_reloaded(clock):
    store = InMemoryCacheStore(clock=clock)
    store.set("product-by-slug:rose-serum", "{not json", ttl=60)
    resolver = ReadThroughResolver(store)

    payload, from_cache = resolver.resolve(PRODUCT_BY_SLUG, ("rose-serum",), CountingLoader({"id": 1}))

    assert payload == {"id": 1}
    assert from_cache is False
    assert store.get("product-by-slug:rose-serum") == '{"id":1}'


def test_loader_errors_are_not_cached(clock):
    store = InMemoryCacheStore(clock=clock)
    resolver = ReadThroughResolver(store)

    def missing():
        raise LookupError("no such product")

    with pytest.raises(LookupError):
        resolver.resolve(PRODUCT_BY_SLUG, ("ghost",), missing)

    assert store.keys() == []
