import structlog
from typing import List, Optional, Tuple

from fastapi import UploadFile
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from app.cache.invalidation import InvalidationCoordinator
from app.cache.namespaces import (
    CATALOG_MENU,
    CATEGORIES_ALL,
    CATEGORIES_MAIN,
    CATEGORY_DETAIL,
    CATEGORY_PRODUCTS,
    Mutation,
    product_slug_keys,
)
from app.cache.resolver import ReadThroughResolver
from app.core.config import settings
from app.core.exceptions import Conflict, NotFound, ValidationError
from app.models.category import Category, CategoryType
from app.models.product import Product, ProductStatus
from app.schemas.category import CATEGORY_IMAGE_COUNT, CategoryCreate, CategoryResponse, CategoryUpdate
from app.services.identifier_service import IdentifierAllocator, persist_with_identifiers
from app.services.media_storage import MediaStorage, discard_media, upload_batch
from app.services.product_service import product_card

logger = structlog.get_logger(__name__)


def category_payload(category: Category) -> dict:
    return CategoryResponse.model_validate(category).model_dump()


def _ordered(query):
    return query.order_by(Category.display_order.asc(), Category.created_at.asc(), Category.id.asc())


class CategoryService:

    # ============= HELPERS =============

    @staticmethod
    def _live(db: Session):
        return db.query(Category).filter(Category.is_deleted == False)

    @staticmethod
    def _get_live(db: Session, category_id: int) -> Category:
        category = CategoryService._live(db).filter(Category.id == category_id).first()
        if not category:
            raise NotFound("Category not found")
        return category

    @staticmethod
    def _ensure_name_available(db: Session, names: List[str], exclude_ids: Tuple[int, ...] = ()) -> None:
        """Names are unique among live categories; a soft-deleted name can be reused."""
        lowered = [name.lower() for name in names]
        query = CategoryService._live(db).filter(func.lower(Category.name).in_(lowered))
        if exclude_ids:
            query = query.filter(Category.id.notin_(exclude_ids))
        taken = query.first()
        if taken:
            raise Conflict(f"Category '{taken.name}' already exists")

    @staticmethod
    def _validate_parent(
        db: Session,
        category_type: CategoryType,
        parent_id: Optional[int],
        category_id: Optional[int] = None,
    ) -> None:
        if category_type == CategoryType.MAIN:
            if parent_id is not None:
                raise ValidationError("Main category cannot have a parent", [{"field": "parent_id"}])
            return

        if parent_id is None:
            raise ValidationError("Subcategory requires parent_id", [{"field": "parent_id"}])
        if category_id is not None and parent_id == category_id:
            raise ValidationError("A category cannot be its own parent", [{"field": "parent_id"}])

        parent = CategoryService._live(db).filter(Category.id == parent_id).first()
        if not parent:
            raise NotFound("Parent category not found")
        if parent.type != CategoryType.MAIN:
            raise ValidationError("Parent must be a main category", [{"field": "parent_id"}])

    @staticmethod
    def _check_images(images: List[UploadFile]) -> None:
        if len(images) != CATEGORY_IMAGE_COUNT:
            raise ValidationError(
                f"A category needs exactly {CATEGORY_IMAGE_COUNT} images", [{"field": "images"}]
            )

    @staticmethod
    def _tree_ids(db: Session, category: Category) -> List[int]:
        child_ids = [row.id for row in db.query(Category.id).filter(Category.parent_id == category.id).all()]
        return [category.id] + child_ids

    # ============= READS =============

    @staticmethod
    def all_categories(db: Session, resolver: ReadThroughResolver) -> Tuple[list, bool]:
        """Every category, deleted and inactive included. Admin view."""
        return resolver.resolve(
            CATEGORIES_ALL,
            (),
            lambda: [category_payload(c) for c in _ordered(db.query(Category)).all()],
        )

    @staticmethod
    def main_categories(db: Session, resolver: ReadThroughResolver) -> Tuple[list, bool]:
        def load() -> list:
            query = CategoryService._live(db).filter(
                Category.type == CategoryType.MAIN,
                Category.is_active == True,
            )
            return [category_payload(c) for c in _ordered(query).all()]

        return resolver.resolve(CATEGORIES_MAIN, (), load)

    @staticmethod
    def get_category(db: Session, category_id: int) -> dict:
        return category_payload(CategoryService._get_live(db, category_id))

    @staticmethod
    def subcategories(db: Session, parent_id: int) -> list:
        CategoryService._get_live(db, parent_id)
        query = CategoryService._live(db).filter(
            Category.parent_id == parent_id,
            Category.is_active == True,
        )
        return [category_payload(c) for c in _ordered(query).all()]

    @staticmethod
    def category_details(db: Session, resolver: ReadThroughResolver, category_id: int) -> Tuple[dict, bool]:
        def load() -> dict:
            category = CategoryService._get_live(db, category_id)
            subcategories = _ordered(
                CategoryService._live(db).filter(
                    Category.parent_id == category.id,
                    Category.is_active == True,
                )
            ).all()
            tree_ids = [category.id] + [sub.id for sub in subcategories]
            products = (
                db.query(Product)
                .options(selectinload(Product.images), selectinload(Product.variants))
                .filter(
                    Product.status == ProductStatus.ACTIVE,
                    or_(Product.category_id.in_(tree_ids), Product.subcategory_id.in_(tree_ids)),
                )
                .order_by(Product.created_at.desc(), Product.id.desc())
                .all()
            )
            return {
                "category": category_payload(category),
                "subcategories": [category_payload(sub) for sub in subcategories],
                "products": [product_card(p) for p in products],
            }

        return resolver.resolve(CATEGORY_DETAIL, (category_id,), load)

    @staticmethod
    def category_products(db: Session, resolver: ReadThroughResolver, category_id: int) -> Tuple[list, bool]:
        def load() -> list:
            CategoryService._get_live(db, category_id)
            products = (
                db.query(Product)
                .options(selectinload(Product.images), selectinload(Product.variants))
                .filter(
                    Product.status == ProductStatus.ACTIVE,
                    or_(Product.category_id == category_id, Product.subcategory_id == category_id),
                )
                .order_by(Product.created_at.desc(), Product.id.desc())
                .all()
            )
            if not products:
                raise NotFound("No products found for this category")
            return [product_card(p) for p in products]

        return resolver.resolve(CATEGORY_PRODUCTS, (category_id,), load)

    @staticmethod
    def catalog_menu(db: Session, resolver: ReadThroughResolver) -> Tuple[list, bool]:
        """Active main categories with their subcategories and newest products."""

        def load() -> list:
            live_active = CategoryService._live(db).filter(Category.is_active == True)
            mains = _ordered(live_active.filter(Category.type == CategoryType.MAIN)).all()
            menu = []
            for main in mains:
                subcategories = _ordered(live_active.filter(Category.parent_id == main.id)).all()
                tree_ids = [main.id] + [sub.id for sub in subcategories]
                products = (
                    db.query(Product)
                    .options(selectinload(Product.images), selectinload(Product.variants))
                    .filter(
                        Product.status == ProductStatus.ACTIVE,
                        or_(Product.category_id.in_(tree_ids), Product.subcategory_id.in_(tree_ids)),
                    )
                    .order_by(Product.created_at.desc(), Product.id.desc())
                    .limit(settings.CATALOG_MENU_PRODUCTS)
                    .all()
                )
                menu.append(
                    {
                        "category": category_payload(main),
                        "subcategories": [category_payload(sub) for sub in subcategories],
                        "products": [product_card(p) for p in products],
                    }
                )
            return menu

        return resolver.resolve(CATALOG_MENU, (), load)

    # ============= MUTATIONS =============

    @staticmethod
    def create_category(
        db: Session,
        data: CategoryCreate,
        images: List[UploadFile],
        media: MediaStorage,
        coordinator: InvalidationCoordinator,
    ) -> dict:
        CategoryService._validate_parent(db, data.type, data.parent_id)
        CategoryService._check_images(images)
        CategoryService._ensure_name_available(db, [data.name])

        urls = upload_batch(media, images)

        def write() -> Category:
            CategoryService._ensure_name_available(db, [data.name])
            category = Category(
                name=data.name,
                slug=IdentifierAllocator.allocate_slug(db, Category, data.name),
                description=data.description,
                type=data.type,
                parent_id=data.parent_id,
                display_order=data.display_order,
                images=urls,
                is_active=data.is_active,
            )
            db.add(category)
            return category

        try:
            category = persist_with_identifiers(db, write)
        except Exception:
            db.rollback()
            discard_media(media, urls)
            raise

        logger.info("category_created", category_id=category.id, slug=category.slug)
        coordinator.invalidate(Mutation.CATEGORY_CREATED)
        return category_payload(category)

    @staticmethod
    def update_category(
        db: Session,
        category_id: int,
        data: CategoryUpdate,
        images: List[UploadFile],
        media: MediaStorage,
        coordinator: InvalidationCoordinator,
    ) -> dict:
        category = CategoryService._get_live(db, category_id)
        fields = data.model_fields_set

        category_type = data.type if data.type is not None else category.type
        parent_id = data.parent_id if "parent_id" in fields else category.parent_id
        if category_type == CategoryType.MAIN and "parent_id" not in fields:
            parent_id = None
        CategoryService._validate_parent(db, category_type, parent_id, category_id=category.id)
        if category_type == CategoryType.SUB and category.type == CategoryType.MAIN:
            # soft-deleted children count too, they come back on restore
            has_children = db.query(Category.id).filter(Category.parent_id == category.id).first()
            if has_children:
                raise ValidationError("A category with subcategories cannot become a subcategory")

        if images:
            CategoryService._check_images(images)

        name_changed = data.name is not None and data.name != category.name
        if name_changed:
            CategoryService._ensure_name_available(db, [data.name], exclude_ids=(category.id,))

        old_images = list(category.images or [])
        updates = data.model_dump(exclude_unset=True, exclude={"name", "type", "parent_id"})
        new_urls = upload_batch(media, images) if images else []

        def write() -> Category:
            if name_changed:
                CategoryService._ensure_name_available(db, [data.name], exclude_ids=(category.id,))
                category.name = data.name
                category.slug = IdentifierAllocator.allocate_slug(db, Category, data.name, exclude_id=category.id)
            category.type = category_type
            category.parent_id = parent_id
            for field, value in updates.items():
                setattr(category, field, value)
            if new_urls:
                category.images = new_urls
            return category

        try:
            category = persist_with_identifiers(db, write)
        except Exception:
            db.rollback()
            discard_media(media, new_urls)
            raise

        if new_urls:
            discard_media(media, old_images)
        logger.info("category_updated", category_id=category.id, slug=category.slug)
        coordinator.invalidate(Mutation.CATEGORY_UPDATED)
        return category_payload(category)

    @staticmethod
    def delete_category(
        db: Session,
        category_id: int,
        hard_delete: bool,
        media: MediaStorage,
        coordinator: InvalidationCoordinator,
    ) -> dict:
        """
        Soft delete marks the category and its subcategories deleted; hard
        delete removes them. Either way products referencing any of them are
        detached.
        """
        query = db.query(Category).filter(Category.id == category_id)
        if not hard_delete:
            query = query.filter(Category.is_deleted == False)
        category = query.first()
        if not category:
            raise NotFound("Category not found")

        tree_ids = CategoryService._tree_ids(db, category)
        affected = (
            db.query(Product.slug)
            .filter(or_(Product.category_id.in_(tree_ids), Product.subcategory_id.in_(tree_ids)))
            .all()
        )
        affected_slugs = [row.slug for row in affected]

        db.query(Product).filter(Product.category_id.in_(tree_ids)).update(
            {Product.category_id: None}, synchronize_session=False
        )
        db.query(Product).filter(Product.subcategory_id.in_(tree_ids)).update(
            {Product.subcategory_id: None}, synchronize_session=False
        )

        media_urls = []
        if hard_delete:
            tree = db.query(Category).filter(Category.id.in_(tree_ids)).all()
            for node in tree:
                media_urls.extend(node.images or [])
            # children first: they reference the parent
            for node in sorted(tree, key=lambda node: node.id == category.id):
                db.delete(node)
                db.flush()
        else:
            db.query(Category).filter(Category.id.in_(tree_ids)).update(
                {Category.is_deleted: True}, synchronize_session=False
            )
        db.commit()

        if media_urls:
            discard_media(media, media_urls)
        logger.info(
            "category_deleted",
            category_id=category_id,
            hard_delete=hard_delete,
            categories=len(tree_ids),
            detached_products=len(affected_slugs),
        )
        coordinator.invalidate(Mutation.CATEGORY_DELETED, product_slug_keys(affected_slugs))
        return {
            "id": category_id,
            "deleted_categories": tree_ids,
            "detached_products": len(affected_slugs),
            "hard_delete": hard_delete,
        }

    @staticmethod
    def restore_category(db: Session, category_id: int, coordinator: InvalidationCoordinator) -> dict:
        """Un-delete a category and its subcategories. Product references stay detached."""
        category = db.query(Category).filter(Category.id == category_id).first()
        if not category:
            raise NotFound("Category not found")
        if not category.is_deleted:
            raise ValidationError("Category is not deleted")
        if category.parent_id is not None:
            parent = CategoryService._live(db).filter(Category.id == category.parent_id).first()
            if not parent:
                raise ValidationError("Restore the parent category first")
        CategoryService._validate_parent(db, category.type, category.parent_id, category.id)

        tree_ids = CategoryService._tree_ids(db, category)
        names = [row.name for row in db.query(Category.name).filter(Category.id.in_(tree_ids)).all()]
        CategoryService._ensure_name_available(db, names, exclude_ids=tuple(tree_ids))

        db.query(Category).filter(Category.id.in_(tree_ids)).update(
            {Category.is_deleted: False}, synchronize_session=False
        )
        db.commit()
        db.refresh(category)

        logger.info("category_restored", category_id=category.id, categories=len(tree_ids))
        coordinator.invalidate(Mutation.CATEGORY_RESTORED)
        return category_payload(category)
