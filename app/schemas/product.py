from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import settings
from app.models.product import ProductStatus

MAX_PRODUCT_IMAGES = 5
MAX_TAGS = 10


def _clamp_limit(value: int, default: int, maximum: int) -> int:
    if value < 1:
        return default
    return min(value, maximum)


def _normalize_term(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = " ".join(value.lower().split())
    return value or None


def _normalize_tags(value: List[str]) -> List[str]:
    tags = []
    for tag in value:
        tag = tag.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class VariantIn(BaseModel):
    size: str = Field(..., min_length=1, max_length=50)
    color: str = Field(..., min_length=1, max_length=50)
    price: float = Field(..., gt=0)
    stock_quantity: int = Field(0, ge=0)
    packaging: str = Field("Bottle", max_length=50)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    category_id: int
    subcategory_id: Optional[int] = None
    brand: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    discount: float = Field(0, ge=0, le=100)
    status: ProductStatus = ProductStatus.ACTIVE
    is_featured: bool = False
    is_hot_product: bool = False
    is_best_seller: bool = False
    tags: List[str] = Field(default_factory=list, max_length=MAX_TAGS)
    additional_info: Dict[str, Any] = Field(default_factory=dict)
    variants: List[VariantIn] = Field(..., min_length=1)

    @field_validator("name", "brand")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("Field cannot be blank")
        return value

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, value: List[str]) -> List[str]:
        return _normalize_tags(value)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    brand: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1)
    discount: Optional[float] = Field(None, ge=0, le=100)
    status: Optional[ProductStatus] = None
    is_featured: Optional[bool] = None
    is_hot_product: Optional[bool] = None
    is_best_seller: Optional[bool] = None
    tags: Optional[List[str]] = Field(None, max_length=MAX_TAGS)
    additional_info: Optional[Dict[str, Any]] = None
    variants: Optional[List[VariantIn]] = Field(None, min_length=1)
    remove_images: List[str] = Field(default_factory=list)

    @field_validator("name", "brand")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = " ".join(value.split())
        if not value:
            raise ValueError("Field cannot be blank")
        return value

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        return _normalize_tags(value)


# ============= CANONICAL QUERY SHAPES =============
# Each read endpoint builds one of these from raw query params; the cache key
# is derived from the struct, so equivalent requests share an entry.

class ProductListingQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    search: Optional[str] = Field(None, max_length=100)
    category: Optional[int] = None
    is_hot_product: Optional[bool] = None
    is_best_seller: Optional[bool] = None
    is_featured: Optional[bool] = None
    page: int = 1
    limit: int = settings.LISTING_DEFAULT_LIMIT

    @field_validator("search")
    @classmethod
    def normalize_search(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_term(value)

    @field_validator("is_hot_product", "is_best_seller", "is_featured")
    @classmethod
    def only_true_filters(cls, value: Optional[bool]) -> Optional[bool]:
        # A false flag does not filter, so it shares the key of an absent one
        return True if value else None

    @field_validator("page")
    @classmethod
    def clamp_page(cls, value: int) -> int:
        return max(value, 1)

    @field_validator("limit")
    @classmethod
    def clamp_limit(cls, value: int) -> int:
        return _clamp_limit(value, settings.LISTING_DEFAULT_LIMIT, settings.LISTING_MAX_LIMIT)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def cache_parts(self) -> Tuple:
        return (
            self.search,
            self.category,
            self.is_hot_product,
            self.is_best_seller,
            self.is_featured,
            self.page,
            self.limit,
        )


class CategorySlugPageQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    category_slug: str = Field(..., min_length=1, max_length=120)
    subcategory_slug: Optional[str] = Field(None, max_length=120)
    page: int = 1
    limit: int = settings.CATEGORY_LISTING_DEFAULT_LIMIT

    @field_validator("category_slug", "subcategory_slug")
    @classmethod
    def normalize_slug(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_term(value)

    @field_validator("page")
    @classmethod
    def clamp_page(cls, value: int) -> int:
        return max(value, 1)

    @field_validator("limit")
    @classmethod
    def clamp_limit(cls, value: int) -> int:
        return _clamp_limit(value, settings.CATEGORY_LISTING_DEFAULT_LIMIT, settings.LISTING_MAX_LIMIT)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def cache_parts(self) -> Tuple:
        return (self.category_slug, self.subcategory_slug, self.page, self.limit)


class SuggestionQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    term: str = Field(..., max_length=100)
    limit: int = 5

    @field_validator("term")
    @classmethod
    def normalize_term(cls, value: str) -> str:
        value = _normalize_term(value)
        if not value:
            raise ValueError("Search term cannot be empty")
        return value

    @field_validator("limit")
    @classmethod
    def clamp_limit(cls, value: int) -> int:
        return _clamp_limit(value, 5, settings.SUGGESTIONS_MAX_LIMIT)

    def cache_parts(self) -> Tuple:
        return (self.term, self.limit)
