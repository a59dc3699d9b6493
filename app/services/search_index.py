import structlog
from abc import ABC, abstractmethod

logger = structlog.get_logger(__name__)


class SearchIndex(ABC):
    """Receives denormalized product documents for an external full-text engine."""

    @abstractmethod
    def upsert(self, document: dict) -> None:
        pass

    @abstractmethod
    def remove(self, product_id: int) -> None:
        pass


class LoggingSearchIndex(SearchIndex):
    """Default index used when no search engine is configured."""

    def upsert(self, document: dict) -> None:
        logger.info("search_index_upsert", product_id=document["id"], slug=document["slug"])

    def remove(self, product_id: int) -> None:
        logger.info("search_index_remove", product_id=product_id)


def product_document(product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "product_code": product.product_code,
        "brand": product.brand,
        "description": product.description,
        "tags": list(product.tags or []),
        "category": product.category.name if product.category else None,
        "subcategory": product.subcategory.name if product.subcategory else None,
        "status": product.status.value,
        "rating": product.rating,
        "prices": [variant.price_after_discount(product.discount) for variant in product.variants],
    }


def sync_product(index: SearchIndex, product) -> None:
    try:
        index.upsert(product_document(product))
    except Exception as exc:
        # Search is a feature, not a dependency of catalog writes
        logger.warning("search_index_failed", product_id=product.id, error=str(exc))


def drop_product(index: SearchIndex, product_id: int) -> None:
    try:
        index.remove(product_id)
    except Exception as exc:
        logger.warning("search_index_failed", product_id=product_id, error=str(exc))
