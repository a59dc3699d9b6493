from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api.deps import get_resolver
from app.cache.resolver import ReadThroughResolver
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.services.category_service import CategoryService
from app.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
@limiter.limit("100/minute")
def get_main_categories(
    request: Request,
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    """Public: active main categories ordered for navigation."""
    categories, from_cache = CategoryService.main_categories(db, resolver)
    return success(data=categories, message="Categories retrieved", meta={"from_cache": from_cache})


@router.get("/menu", response_model=dict)
@limiter.limit("100/minute")
def get_catalog_menu(
    request: Request,
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    """Public: main categories with subcategories and newest products."""
    menu, from_cache = CategoryService.catalog_menu(db, resolver)
    return success(data=menu, message="Catalog menu retrieved", meta={"from_cache": from_cache})


@router.get("/{category_id}", response_model=dict)
@limiter.limit("100/minute")
def get_category(request: Request, category_id: int, db: Session = Depends(get_db)):
    return success(data=CategoryService.get_category(db, category_id), message="Category retrieved")


@router.get("/{category_id}/subcategories", response_model=dict)
@limiter.limit("100/minute")
def get_subcategories(request: Request, category_id: int, db: Session = Depends(get_db)):
    return success(data=CategoryService.subcategories(db, category_id), message="Subcategories retrieved")


@router.get("/{category_id}/details", response_model=dict)
@limiter.limit("100/minute")
def get_category_details(
    request: Request,
    category_id: int,
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    """Public: category with its active subcategories and products."""
    details, from_cache = CategoryService.category_details(db, resolver, category_id)
    return success(data=details, message="Category details retrieved", meta={"from_cache": from_cache})


@router.get("/{category_id}/products", response_model=dict)
@limiter.limit("100/minute")
def get_category_products(
    request: Request,
    category_id: int,
    db: Session = Depends(get_db),
    resolver: ReadThroughResolver = Depends(get_resolver),
):
    products, from_cache = CategoryService.category_products(db, resolver, category_id)
    return success(data=products, message="Products retrieved", meta={"from_cache": from_cache})
