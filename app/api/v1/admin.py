import structlog
from fastapi import APIRouter, Depends, UploadFile, File, Form, Query, Request
from sqlalchemy.orm import Session
from typing import List, Optional

from app.api.deps import (
    CurrentUser,
    get_cache_store,
    get_coordinator,
    get_media_storage,
    get_resolver,
    get_search_index,
    require_admin,
)
from app.cache.invalidation import InvalidationCoordinator
from app.cache.resolver import ReadThroughResolver
from app.cache.store import CacheStore
from app.core.exceptions import CacheUnavailable
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.category import CategoryType
from app.models.product import ProductStatus
from app.schemas.category import CategoryCreate, CategoryUpdate
from app.schemas.product import ProductCreate, ProductUpdate
from app.services.category_service import CategoryService
from app.services.media_storage import MediaStorage
from app.services.product_service import ProductService
from app.services.search_index import SearchIndex
from app.utils.forms import build_schema, parse_json_field
from app.utils.response import success

router = APIRouter()
logger = structlog.get_logger(__name__)


def _json_or_none(raw: Optional[str], field: str):
    return parse_json_field(raw, field) if raw is not None else None


# ============= CATEGORY MANAGEMENT =============

@router.get("/categories")
@limiter.limit("60/minute")
def list_categories(
    request: Request,
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    """Admin: List categories (active, inactive and deleted)."""
    categories, from_cache = CategoryService.all_categories(db, resolver)
    return success(data=categories, message="Categories retrieved", meta={"from_cache": from_cache})


@router.post("/categories", status_code=201)
@limiter.limit("30/minute")
def create_category(
    request: Request,
    name: str = Form(...),
    description: Optional[str] = Form(None),
    type: CategoryType = Form(CategoryType.MAIN),
    parent_id: Optional[int] = Form(None),
    display_order: Optional[int] = Form(None),
    is_active: Optional[bool] = Form(None),
    images: List[UploadFile] = File(...),
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStorage = Depends(get_media_storage),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
):
    """Admin: Create category with exactly two images"""
    data = build_schema(
        CategoryCreate,
        name=name,
        description=description,
        type=type,
        parent_id=parent_id,
        display_order=display_order,
        is_active=is_active,
    )
    category = CategoryService.create_category(db, data, images, media, coordinator)
    return success(data=category, message="Category created")


@router.put("/categories/{category_id}")
@limiter.limit("30/minute")
def update_category(
    request: Request,
    category_id: int,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    type: Optional[CategoryType] = Form(None),
    parent_id: Optional[int] = Form(None),
    display_order: Optional[int] = Form(None),
    is_active: Optional[bool] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStorage = Depends(get_media_storage),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
):
    """Admin: Update category fields; new images replace both old ones."""
    data = build_schema(
        CategoryUpdate,
        name=name,
        description=description,
        type=type,
        parent_id=parent_id,
        display_order=display_order,
        is_active=is_active,
    )
    category = CategoryService.update_category(db, category_id, data, images or [], media, coordinator)
    return success(data=category, message="Category updated")


@router.delete("/categories/{category_id}")
@limiter.limit("20/minute")
def delete_category(
    request: Request,
    category_id: int,
    hard_delete: bool = Query(False),
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStorage = Depends(get_media_storage),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
):
    """Admin: Soft delete (default) or hard delete a category and its subcategories."""
    result = CategoryService.delete_category(db, category_id, hard_delete, media, coordinator)
    return success(data=result, message="Category deleted" if hard_delete else "Category moved to trash")


@router.post("/categories/{category_id}/restore")
@limiter.limit("20/minute")
def restore_category(
    request: Request,
    category_id: int,
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
):
    category = CategoryService.restore_category(db, category_id, coordinator)
    return success(data=category, message="Category restored")


# ============= PRODUCT MANAGEMENT =============

@router.post("/products", status_code=201)
@limiter.limit("30/minute")
def create_product(
    request: Request,
    name: str = Form(...),
    category_id: int = Form(...),
    subcategory_id: Optional[int] = Form(None),
    brand: str = Form(...),
    description: str = Form(...),
    discount: Optional[float] = Form(None),
    status: Optional[ProductStatus] = Form(None),
    is_featured: Optional[bool] = Form(None),
    is_hot_product: Optional[bool] = Form(None),
    is_best_seller: Optional[bool] = Form(None),
    tags: Optional[str] = Form(None),  # JSON array
    additional_info: Optional[str] = Form(None),  # JSON object
    variants: str = Form(...),  # JSON array of {size, color, price, stock_quantity}
    images: List[UploadFile] = File(...),
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStorage = Depends(get_media_storage),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
    search_index: SearchIndex = Depends(get_search_index),
):
    """Admin: Create new product"""
    data = build_schema(
        ProductCreate,
        name=name,
        category_id=category_id,
        subcategory_id=subcategory_id,
        brand=brand,
        description=description,
        discount=discount,
        status=status,
        is_featured=is_featured,
        is_hot_product=is_hot_product,
        is_best_seller=is_best_seller,
        tags=_json_or_none(tags, "tags"),
        additional_info=_json_or_none(additional_info, "additional_info"),
        variants=parse_json_field(variants, "variants"),
    )
    product = ProductService.create_product(db, data, images, media, coordinator, search_index)
    return success(data=product, message="Product created successfully")


@router.put("/products/{product_id}")
@limiter.limit("30/minute")
def update_product(
    request: Request,
    product_id: int,
    name: Optional[str] = Form(None),
    category_id: Optional[int] = Form(None),
    subcategory_id: Optional[int] = Form(None),
    brand: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    discount: Optional[float] = Form(None),
    status: Optional[ProductStatus] = Form(None),
    is_featured: Optional[bool] = Form(None),
    is_hot_product: Optional[bool] = Form(None),
    is_best_seller: Optional[bool] = Form(None),
    tags: Optional[str] = Form(None),
    additional_info: Optional[str] = Form(None),
    variants: Optional[str] = Form(None),
    remove_images: Optional[str] = Form(None),  # JSON array of image URLs
    images: Optional[List[UploadFile]] = File(None),
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStorage = Depends(get_media_storage),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
    search_index: SearchIndex = Depends(get_search_index),
):
    """Admin: Update product. Setting status=Inactive hides it from the storefront."""
    data = build_schema(
        ProductUpdate,
        name=name,
        category_id=category_id,
        subcategory_id=subcategory_id,
        brand=brand,
        description=description,
        discount=discount,
        status=status,
        is_featured=is_featured,
        is_hot_product=is_hot_product,
        is_best_seller=is_best_seller,
        tags=_json_or_none(tags, "tags"),
        additional_info=_json_or_none(additional_info, "additional_info"),
        variants=_json_or_none(variants, "variants"),
        remove_images=_json_or_none(remove_images, "remove_images"),
    )
    product = ProductService.update_product(
        db, product_id, data, images or [], media, coordinator, search_index
    )
    return success(data=product, message="Product updated successfully")


@router.put("/products/{product_id}/images")
@limiter.limit("30/minute")
def replace_product_images(
    request: Request,
    product_id: int,
    images: List[UploadFile] = File(...),
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStorage = Depends(get_media_storage),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
    search_index: SearchIndex = Depends(get_search_index),
):
    """Admin: Replace the full image set of a product"""
    product = ProductService.replace_images(db, product_id, images, media, coordinator, search_index)
    return success(data=product, message=f"{len(images)} images saved")


@router.delete("/products/{product_id}")
@limiter.limit("20/minute")
def delete_product(
    request: Request,
    product_id: int,
    current_admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStorage = Depends(get_media_storage),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
    search_index: SearchIndex = Depends(get_search_index),
):
    """Admin: Delete product with its images, reviews and cart lines"""
    ProductService.delete_product(db, product_id, media, coordinator, search_index)
    return success(message="Product deleted successfully")


# ============= CACHE MANAGEMENT =============

@router.delete("/cache")
@limiter.limit("10/minute")
def clear_cache(
    request: Request,
    current_admin: CurrentUser = Depends(require_admin),
    store: CacheStore = Depends(get_cache_store),
):
    """Admin: Drop every cached entry. Safe at any time; only costs latency."""
    try:
        deleted = store.delete_all()
    except CacheUnavailable as exc:
        logger.warning("cache_clear_failed", error=str(exc))
        return success(data={"deleted": 0, "available": False}, message="Cache is unavailable")

    logger.info("cache_cleared", deleted=deleted, admin_user_id=current_admin.id)
    return success(data={"deleted": deleted, "available": True}, message="Cache cleared")


@router.get("/cache/stats")
@limiter.limit("60/minute")
def cache_stats(
    request: Request,
    current_admin: CurrentUser = Depends(require_admin),
    store: CacheStore = Depends(get_cache_store),
):
    try:
        stats = store.stats()
    except CacheUnavailable as exc:
        logger.warning("cache_stats_failed", error=str(exc))
        return success(data={"available": False}, message="Cache is unavailable")

    stats["available"] = True
    return success(data=stats, message="Cache statistics retrieved")
