from app.cache.invalidation import InvalidationCoordinator
from app.cache.namespaces import Mutation, prefixes_for
from app.cache.store import InMemoryCacheStore
from app.core.exceptions import CacheUnavailable


class FlakyStore(InMemoryCacheStore):
    """In-memory store that fails deletes for chosen prefixes or keys."""

    def __init__(self, clock, broken=()):
        super().__init__(clock=clock)
        self.broken = set(broken)

    def delete_by_prefix(self, prefix):
        if prefix in self.broken:
            raise CacheUnavailable(f"cannot reach cache for {prefix}")
        return super().delete_by_prefix(prefix)

    def delete(self, *keys):
        if any(key in self.broken for key in keys):
            raise CacheUnavailable("cannot reach cache")
        return super().delete(*keys)


def _seed(store):
    for key in (
        "categories-main",
        "categories-all",
        "catalog-menu",
        "products-listing:none:none:none:none:none:1:12",
        "products-search-fallback:sham:none:none:none:none:1:12",
        "category-products:slug:hair-care:none:1:20",
        "product-by-slug:rose-serum",
        "product-by-slug:aloe-gel",
    ):
        store.set(key, "{}", ttl=300)


def test_product_mutation_clears_listings_and_named_slugs(clock):
    store = InMemoryCacheStore(clock=clock)
    _seed(store)

    report = InvalidationCoordinator(store).invalidate(
        Mutation.PRODUCT_UPDATED, ["product-by-slug:rose-serum"]
    )

    assert report.complete
    assert report.deleted == 5
    assert store.keys() == ["categories-all", "categories-main", "product-by-slug:aloe-gel"]


def test_category_mutation_keeps_product_listings(clock):
    store = InMemoryCacheStore(clock=clock)
    _seed(store)

    InvalidationCoordinator(store).invalidate(Mutation.CATEGORY_CREATED)

    assert "categories-main" not in store.keys()
    assert "catalog-menu" not in store.keys()
    assert "category-products:slug:hair-care:none:1:20" not in store.keys()
    assert "products-listing:none:none:none:none:none:1:12" in store.keys()


def test_invalidating_an_empty_cache_is_a_no_op(clock):
    report = InvalidationCoordinator(InMemoryCacheStore(clock=clock)).invalidate(Mutation.PRODUCT_DELETED)

    assert report.complete
    assert report.deleted == 0
    assert report.cleared == list(prefixes_for(Mutation.PRODUCT_DELETED))


def test_failed_prefix_does_not_stop_the_others(clock):
    store = FlakyStore(clock, broken={"products-listing:", "product-by-slug:rose-serum"})
    _seed(store)
    retried = []

    report = InvalidationCoordinator(store, on_failure=retried.append).invalidate(
        Mutation.PRODUCT_CREATED, ["product-by-slug:rose-serum"]
    )

    assert not report.complete
    assert report.failed == ["products-listing:", "product-by-slug:rose-serum"]
    assert "products-search-fallback:" in report.cleared
    assert "products-search-fallback:sham:none:none:none:none:1:12" not in store.keys()
    assert "products-listing:none:none:none:none:none:1:12" in store.keys()
    assert retried == [["products-listing:", "product-by-slug:rose-serum"]]


def test_retry_hook_errors_are_not_raised(clock):
    store = FlakyStore(clock, broken={"catalog-menu"})

    def broken_hook(targets):
        raise RuntimeError("broker down")

    report = InvalidationCoordinator(store, on_failure=broken_hook).invalidate(Mutation.CATEGORY_UPDATED)

    assert report.failed == ["catalog-menu"]


def test_no_retry_when_everything_cleared(clock):
    retried = []
    InvalidationCoordinator(InMemoryCacheStore(clock=clock), on_failure=retried.append).invalidate(
        Mutation.REVIEW_CHANGED
    )
    assert retried == []
