from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import Optional

from app.api.deps import get_resolver
from app.cache.resolver import ReadThroughResolver
from app.core.config import settings
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.product import CategorySlugPageQuery, ProductListingQuery, SuggestionQuery
from app.services.product_service import ProductService
from app.utils.forms import build_schema
from app.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
@limiter.limit("100/minute")
def get_products(
    request: Request,
    page: int = Query(1),
    limit: int = Query(settings.LISTING_DEFAULT_LIMIT),
    search: Optional[str] = None,
    category: Optional[int] = None,
    is_hot_product: Optional[bool] = None,
    is_best_seller: Optional[bool] = None,
    is_featured: Optional[bool] = None,
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    """
    Get products with filtering and pagination.

    ``limit`` is clamped to LISTING_MAX_LIMIT. With ``search``, results are
    ranked by relevance and fall back to a substring match when nothing ranks.
    """
    params = build_schema(
        ProductListingQuery,
        page=page,
        limit=limit,
        search=search,
        category=category,
        is_hot_product=is_hot_product,
        is_best_seller=is_best_seller,
        is_featured=is_featured,
    )
    payload, from_cache = ProductService.list_products(db, resolver, params)
    return success(data=payload, message="Products retrieved", meta={"from_cache": from_cache})


@router.get("/count", response_model=dict)
@limiter.limit("100/minute")
def count_products(request: Request, db: Session = Depends(get_db)):
    return success(data=ProductService.count_products(db), message="Product count retrieved")


@router.get("/suggestions", response_model=dict)
@limiter.limit("200/minute")
def get_search_suggestions(
    request: Request,
    q: str = Query(..., min_length=1),
    limit: int = Query(5),
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    params = build_schema(SuggestionQuery, term=q, limit=limit)
    payload, from_cache = ProductService.search_suggestions(db, resolver, params)
    return success(data=payload, message="Suggestions retrieved", meta={"from_cache": from_cache})


@router.get("/category/{category_slug}", response_model=dict)
@router.get("/category/{category_slug}/{subcategory_slug}", response_model=dict)
@limiter.limit("100/minute")
def get_products_by_category_slug(
    request: Request,
    category_slug: str,
    subcategory_slug: Optional[str] = None,
    page: int = Query(1),
    limit: int = Query(settings.CATEGORY_LISTING_DEFAULT_LIMIT),
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    params = build_schema(
        CategorySlugPageQuery,
        category_slug=category_slug,
        subcategory_slug=subcategory_slug,
        page=page,
        limit=limit,
    )
    payload, from_cache = ProductService.products_by_category_slug(db, resolver, params)
    return success(data=payload, message="Products retrieved", meta={"from_cache": from_cache})


@router.get("/{slug}", response_model=dict)
@limiter.limit("100/minute")
def get_product(
    request: Request,
    slug: str,
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    """Get product details by slug"""
    product, from_cache = ProductService.get_product_by_slug(db, resolver, slug)
    return success(data=product, message="Product retrieved", meta={"from_cache": from_cache})
