"""
Cache namespaces and the static invalidation table.

Every read-path key is ``<namespace prefix><canonical query parts>``. Each
mutation declares up front which prefixes it clears; nothing computes the
affected keys dynamically.
"""
import enum
from dataclasses import dataclass
from typing import Dict, Iterable, Tuple
from urllib.parse import quote

from app.core.config import settings


def encode_part(part) -> str:
    if part is None or part is False:
        return "none"
    if part is True:
        return "true"
    # ':' and '*' must never leak into a key from user input
    return quote(str(part), safe="")


@dataclass(frozen=True)
class Namespace:
    prefix: str
    ttl_setting: str
    exact: bool = False

    @property
    def ttl(self) -> int:
        return getattr(settings, self.ttl_setting)

    def key(self, *parts) -> str:
        if self.exact:
            if parts:
                raise ValueError(f"{self.prefix} is a single-key namespace")
            return self.prefix
        if not parts:
            raise ValueError(f"{self.prefix} keys need at least one part")
        return self.prefix + ":".join(encode_part(part) for part in parts)


# Category trees change rarely: long TTL
CATEGORIES_ALL = Namespace("categories-all", "CACHE_CATEGORY_TTL", exact=True)
CATEGORIES_MAIN = Namespace("categories-main", "CACHE_CATEGORY_TTL", exact=True)
CATEGORY_DETAIL = Namespace("category-detail:", "CACHE_CATEGORY_TTL")
CATEGORY_PRODUCTS = Namespace("category-products:", "CACHE_CATEGORY_TTL")

# Product-bearing listings: short TTL
CATALOG_MENU = Namespace("catalog-menu", "CACHE_LISTING_TTL", exact=True)
CATEGORY_PRODUCT_PAGES = Namespace("category-products:slug:", "CACHE_LISTING_TTL")
PRODUCTS_LISTING = Namespace("products-listing:", "CACHE_LISTING_TTL")
PRODUCTS_SEARCH_FALLBACK = Namespace("products-search-fallback:", "CACHE_LISTING_TTL")
SEARCH_SUGGESTIONS = Namespace("search-suggestions:", "CACHE_LISTING_TTL")
PRODUCT_BY_SLUG = Namespace("product-by-slug:", "CACHE_LISTING_TTL")

ALL_NAMESPACES: Tuple[Namespace, ...] = (
    CATEGORIES_ALL,
    CATEGORIES_MAIN,
    CATEGORY_DETAIL,
    CATEGORY_PRODUCTS,
    CATALOG_MENU,
    CATEGORY_PRODUCT_PAGES,
    PRODUCTS_LISTING,
    PRODUCTS_SEARCH_FALLBACK,
    SEARCH_SUGGESTIONS,
    PRODUCT_BY_SLUG,
)


class InvalidationScope(str, enum.Enum):
    CATEGORY_TREE = "category_tree"
    PRODUCT_CATALOG = "product_catalog"


SCOPE_NAMESPACES: Dict[InvalidationScope, Tuple[Namespace, ...]] = {
    InvalidationScope.CATEGORY_TREE: (
        CATEGORIES_ALL,
        CATEGORIES_MAIN,
        CATEGORY_DETAIL,
        CATEGORY_PRODUCTS,
        CATALOG_MENU,
    ),
    # Category detail embeds product lists, so product writes clear it too.
    InvalidationScope.PRODUCT_CATALOG: (
        CATALOG_MENU,
        PRODUCTS_LISTING,
        PRODUCTS_SEARCH_FALLBACK,
        SEARCH_SUGGESTIONS,
        CATEGORY_PRODUCTS,
        CATEGORY_DETAIL,
    ),
}


class Mutation(str, enum.Enum):
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    CATEGORY_RESTORED = "category_restored"
    PRODUCT_CREATED = "product_created"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"
    REVIEW_CHANGED = "review_changed"


MUTATION_SCOPES: Dict[Mutation, Tuple[InvalidationScope, ...]] = {
    Mutation.CATEGORY_CREATED: (InvalidationScope.CATEGORY_TREE,),
    Mutation.CATEGORY_UPDATED: (InvalidationScope.CATEGORY_TREE,),
    # deleting detaches products, so their listings change too
    Mutation.CATEGORY_DELETED: (InvalidationScope.CATEGORY_TREE, InvalidationScope.PRODUCT_CATALOG),
    Mutation.CATEGORY_RESTORED: (InvalidationScope.CATEGORY_TREE,),
    Mutation.PRODUCT_CREATED: (InvalidationScope.PRODUCT_CATALOG,),
    Mutation.PRODUCT_UPDATED: (InvalidationScope.PRODUCT_CATALOG,),
    Mutation.PRODUCT_DELETED: (InvalidationScope.PRODUCT_CATALOG,),
    Mutation.REVIEW_CHANGED: (InvalidationScope.PRODUCT_CATALOG,),
}


def prefixes_for(mutation: Mutation) -> Tuple[str, ...]:
    """Ordered, de-duplicated prefixes a mutation invalidates."""
    seen = []
    for scope in MUTATION_SCOPES[mutation]:
        for namespace in SCOPE_NAMESPACES[scope]:
            if namespace.prefix not in seen:
                seen.append(namespace.prefix)
    return tuple(seen)


def product_slug_keys(slugs: Iterable[str]) -> Tuple[str, ...]:
    return tuple(sorted({PRODUCT_BY_SLUG.key(slug) for slug in slugs if slug}))
