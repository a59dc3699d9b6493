from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func, and_
import structlog

from app.cache.invalidation import InvalidationCoordinator
from app.cache.namespaces import Mutation, product_slug_keys
from app.core.config import settings
from app.core.exceptions import Conflict, Forbidden, NotFound
from app.models.review import Review
from app.models.product import Product, ProductStatus
from app.schemas.review import ReviewCreate, ReviewUpdate

logger = structlog.get_logger(__name__)


def review_payload(review: Review) -> dict:
    return {
        "id": review.id,
        "user_id": review.user_id,
        "product_id": review.product_id,
        "rating": review.rating,
        "comment": review.comment,
        "created_at": review.created_at,
        "updated_at": review.updated_at,
    }


class ReviewService:

    @staticmethod
    def _recalculate_product_ratings(db: Session, product_id: int):
        """Recalculate rating and review_count for a product in the current transaction."""
        db.flush()
        result = db.query(
            func.avg(Review.rating).label('avg_rating'),
            func.count(Review.id).label('review_count')
        ).filter(Review.product_id == product_id).first()

        avg_rating = round(float(result.avg_rating), 1) if result.avg_rating else 0.0
        review_count = result.review_count or 0

        db.query(Product).filter(Product.id == product_id).update({
            'rating': avg_rating,
            'review_count': review_count
        }, synchronize_session=False)

    @staticmethod
    def _get_review(db: Session, review_id: int) -> Review:
        review = db.query(Review).filter(Review.id == review_id).first()
        if not review:
            raise NotFound("Review not found")
        return review

    @staticmethod
    def _invalidate(db: Session, coordinator: InvalidationCoordinator, product_id: int) -> None:
        slug = db.query(Product.slug).filter(Product.id == product_id).scalar()
        coordinator.invalidate(Mutation.REVIEW_CHANGED, product_slug_keys([slug]))

    @staticmethod
    def create_review(
        db: Session,
        user_id: int,
        review_data: ReviewCreate,
        coordinator: InvalidationCoordinator,
    ) -> dict:
        """Create a review. One review per user per product, active products only."""
        product = db.query(Product).filter(
            Product.id == review_data.product_id,
            Product.status == ProductStatus.ACTIVE,
        ).first()
        if not product:
            raise NotFound("Product not found")

        existing = db.query(Review).filter(
            and_(Review.user_id == user_id, Review.product_id == review_data.product_id)
        ).first()
        if existing:
            raise Conflict("You have already reviewed this product")

        review = Review(
            user_id=user_id,
            product_id=review_data.product_id,
            rating=review_data.rating,
            comment=review_data.comment,
        )
        db.add(review)
        try:
            ReviewService._recalculate_product_ratings(db, review_data.product_id)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise Conflict("You have already reviewed this product")
        db.refresh(review)

        logger.info("review_created", review_id=review.id, product_id=review.product_id, user_id=user_id)
        ReviewService._invalidate(db, coordinator, review.product_id)
        return review_payload(review)

    @staticmethod
    def get_reviews_for_product(db: Session, product_id: int, page: int = 1, limit: int = 10) -> dict:
        """Paginated reviews for a product, newest first."""
        if not db.query(Product.id).filter(Product.id == product_id).first():
            raise NotFound("Product not found")

        page = max(page, 1)
        limit = min(max(limit, 1), settings.REVIEWS_MAX_LIMIT)
        query = db.query(Review).filter(Review.product_id == product_id)

        total = query.count()
        reviews = (
            query.order_by(Review.created_at.desc(), Review.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "reviews": [review_payload(r) for r in reviews],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        }

    @staticmethod
    def update_review(
        db: Session,
        review_id: int,
        user_id: int,
        review_data: ReviewUpdate,
        coordinator: InvalidationCoordinator,
    ) -> dict:
        """Update a review. Only the owner can update."""
        review = ReviewService._get_review(db, review_id)
        if review.user_id != user_id:
            raise Forbidden("You can only update your own reviews")

        if review_data.rating is not None:
            review.rating = review_data.rating
        if review_data.comment is not None:
            review.comment = review_data.comment

        ReviewService._recalculate_product_ratings(db, review.product_id)
        db.commit()
        db.refresh(review)

        ReviewService._invalidate(db, coordinator, review.product_id)
        return review_payload(review)

    @staticmethod
    def delete_review(
        db: Session,
        review_id: int,
        user_id: int,
        is_admin: bool,
        coordinator: InvalidationCoordinator,
    ) -> None:
        """Delete a review. Owner or admin."""
        review = ReviewService._get_review(db, review_id)
        if review.user_id != user_id and not is_admin:
            raise Forbidden("You can only delete your own reviews")

        product_id = review.product_id
        db.delete(review)
        ReviewService._recalculate_product_ratings(db, product_id)
        db.commit()

        logger.info("review_deleted", review_id=review_id, product_id=product_id, by_admin=is_admin)
        ReviewService._invalidate(db, coordinator, product_id)
