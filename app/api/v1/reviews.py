from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import CurrentUser, get_coordinator, get_current_user
from app.cache.invalidation import InvalidationCoordinator
from app.core.config import settings
from app.core.rate_limiter import limiter
from app.services.review_service import ReviewService
from app.schemas.review import ReviewCreate, ReviewUpdate
from app.utils.response import success

router = APIRouter()


@router.post("", response_model=dict, status_code=201)
@router.post("/", response_model=dict, status_code=201)
@limiter.limit("10/hour")
def create_review(
    request: Request,
    review_data: ReviewCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
):
    """Create a new review for a product. One per user per product."""
    review = ReviewService.create_review(db, current_user.id, review_data, coordinator)
    return success(data=review, message="Review created successfully")


@router.get("/product/{product_id}", response_model=dict)
@limiter.limit("100/minute")
def get_product_reviews(
    request: Request,
    product_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    db: Session = Depends(get_db)
):
    """Get paginated reviews for a product. Public endpoint; limit is capped."""
    result = ReviewService.get_reviews_for_product(db, product_id, page, min(limit, settings.REVIEWS_MAX_LIMIT))
    return success(data=result, message="Reviews retrieved successfully")


@router.put("/{review_id}", response_model=dict)
@limiter.limit("20/minute")
def update_review(
    request: Request,
    review_id: int,
    review_data: ReviewUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
):
    """Update a review. Only the owner can update."""
    review = ReviewService.update_review(db, review_id, current_user.id, review_data, coordinator)
    return success(data=review, message="Review updated successfully")


@router.delete("/{review_id}", response_model=dict)
@limiter.limit("20/minute")
def delete_review(
    request: Request,
    review_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: InvalidationCoordinator = Depends(get_coordinator),
):
    """Delete a review. Only owner or admin can delete."""
    ReviewService.delete_review(db, review_id, current_user.id, current_user.is_admin, coordinator)
    return success(message="Review deleted successfully")
