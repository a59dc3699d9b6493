import re
import structlog
from typing import List, Optional, Sequence, Tuple

from fastapi import UploadFile
from sqlalchemy import String, case, cast, func, literal, or_
from sqlalchemy.orm import Session, selectinload

from app.cache.invalidation import InvalidationCoordinator
from app.cache.namespaces import (
    CATEGORY_PRODUCT_PAGES,
    PRODUCT_BY_SLUG,
    PRODUCTS_LISTING,
    PRODUCTS_SEARCH_FALLBACK,
    SEARCH_SUGGESTIONS,
    Mutation,
    product_slug_keys,
)
from app.cache.resolver import ReadThroughResolver
from app.core.exceptions import Conflict, NotFound, ValidationError
from app.models.cart import CartItem
from app.models.category import Category, CategoryType
from app.models.product import Product, ProductImage, ProductStatus, ProductVariant
from app.schemas.product import (
    MAX_PRODUCT_IMAGES,
    CategorySlugPageQuery,
    ProductCreate,
    ProductListingQuery,
    ProductUpdate,
    SuggestionQuery,
    VariantIn,
)
from app.services.identifier_service import IdentifierAllocator, persist_with_identifiers
from app.services.media_storage import MediaStorage, discard_media, upload_batch
from app.services.search_index import SearchIndex, drop_product, sync_product

logger = structlog.get_logger(__name__)

NAME_WEIGHT = 10
DESCRIPTION_WEIGHT = 5
_WORD = re.compile(r"[a-z0-9]+")

# fixed paths under /products that would shadow a product slug
RESERVED_SLUGS = frozenset({"count", "suggestions", "category"})


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _whole_word(column, word: str):
    padded = literal(" ") + func.lower(column, type_=String) + literal(" ")
    return padded.like(f"% {_escape_like(word)} %", escape="\\")


def _relevance_score(words: Sequence[str]):
    return sum(
        case((_whole_word(Product.name, word), NAME_WEIGHT), else_=0)
        + case((_whole_word(Product.description, word), DESCRIPTION_WEIGHT), else_=0)
        for word in words
    )


def _category_ref(category: Optional[Category]) -> Optional[dict]:
    if category is None or category.is_deleted:
        return None
    return {"id": category.id, "name": category.name, "slug": category.slug}


def product_card(product: Product) -> dict:
    variants = list(product.variants)
    cheapest = min(variants, key=lambda variant: variant.price) if variants else None
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "product_code": product.product_code,
        "brand": product.brand,
        "category_id": product.category_id,
        "subcategory_id": product.subcategory_id,
        "image": product.images[0].image_url if product.images else None,
        "price": cheapest.price if cheapest else None,
        "price_after_discount": cheapest.price_after_discount(product.discount) if cheapest else None,
        "discount": product.discount,
        "rating": product.rating,
        "review_count": product.review_count,
        "status": product.status.value,
        "is_featured": product.is_featured,
        "is_hot_product": product.is_hot_product,
        "is_best_seller": product.is_best_seller,
        "tags": list(product.tags or []),
        "in_stock": any(variant.stock_quantity > 0 for variant in variants),
        "created_at": product.created_at,
    }


def product_detail(product: Product) -> dict:
    detail = product_card(product)
    detail.update(
        {
            "description": product.description,
            "additional_info": dict(product.additional_info or {}),
            "category": _category_ref(product.category),
            "subcategory": _category_ref(product.subcategory),
            "images": [image.image_url for image in product.images],
            "variants": [
                {
                    "id": variant.id,
                    "size": variant.size,
                    "color": variant.color,
                    "price": variant.price,
                    "real_price": variant.price_after_discount(product.discount),
                    "stock_quantity": variant.stock_quantity,
                    "packaging": variant.packaging,
                }
                for variant in product.variants
            ],
            "updated_at": product.updated_at,
        }
    )
    return detail


def _page(items: List[dict], total: int, page: int, limit: int, **extra) -> dict:
    payload = {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }
    payload.update(extra)
    return payload


class ProductService:

    # ============= HELPERS =============

    @staticmethod
    def _active_products(db: Session):
        return (
            db.query(Product)
            .options(selectinload(Product.images), selectinload(Product.variants))
            .filter(Product.status == ProductStatus.ACTIVE)
        )

    @staticmethod
    def _apply_listing_filters(query, params: ProductListingQuery):
        if params.category is not None:
            query = query.filter(
                or_(Product.category_id == params.category, Product.subcategory_id == params.category)
            )
        if params.is_hot_product:
            query = query.filter(Product.is_hot_product == True)
        if params.is_best_seller:
            query = query.filter(Product.is_best_seller == True)
        if params.is_featured:
            query = query.filter(Product.is_featured == True)
        return query

    @staticmethod
    def _get_product(db: Session, product_id: int) -> Product:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise NotFound("Product not found")
        return product

    @staticmethod
    def _resolve_categories(db: Session, category_id: Optional[int], subcategory_id: Optional[int]) -> None:
        if category_id is None:
            if subcategory_id is not None:
                raise ValidationError("subcategory_id requires category_id", [{"field": "subcategory_id"}])
            raise ValidationError("category_id is required", [{"field": "category_id"}])

        category = db.query(Category).filter(Category.id == category_id, Category.is_deleted == False).first()
        if not category:
            raise NotFound(f"Category {category_id} not found")
        if category.type != CategoryType.MAIN:
            raise ValidationError("category_id must reference a main category", [{"field": "category_id"}])

        if subcategory_id is None:
            return
        subcategory = (
            db.query(Category).filter(Category.id == subcategory_id, Category.is_deleted == False).first()
        )
        if not subcategory:
            raise NotFound(f"Subcategory {subcategory_id} not found")
        if subcategory.type != CategoryType.SUB or subcategory.parent_id != category.id:
            raise ValidationError(
                "Subcategory does not belong to the selected category", [{"field": "subcategory_id"}]
            )

    @staticmethod
    def _ensure_name_available(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
        query = db.query(Product.id).filter(func.lower(Product.name) == name.lower())
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if query.first() is not None:
            raise Conflict("A product with this name already exists")

    @staticmethod
    def _check_image_count(count: int) -> None:
        if not 1 <= count <= MAX_PRODUCT_IMAGES:
            raise ValidationError(
                f"A product needs between 1 and {MAX_PRODUCT_IMAGES} images", [{"field": "images"}]
            )

    @staticmethod
    def _sync_variants(db: Session, product: Product, variants: List[VariantIn]) -> None:
        """Update variants in place by position so cart lines keep valid variant ids."""
        existing = list(product.variants)
        for position, data in enumerate(variants):
            if position < len(existing):
                variant = existing[position]
                for field, value in data.model_dump().items():
                    setattr(variant, field, value)
            else:
                product.variants.append(ProductVariant(position=position, **data.model_dump()))

        dropped = existing[len(variants):]
        if dropped:
            db.query(CartItem).filter(
                CartItem.variant_id.in_([variant.id for variant in dropped])
            ).delete(synchronize_session=False)
            for variant in dropped:
                product.variants.remove(variant)

    # ============= READS =============

    @staticmethod
    def list_products(
        db: Session,
        resolver: ReadThroughResolver,
        params: ProductListingQuery,
    ) -> Tuple[dict, bool]:
        parts = params.cache_parts()
        if not params.search:
            return resolver.resolve(PRODUCTS_LISTING, parts, lambda: ProductService._browse(db, params))

        payload, from_cache = resolver.resolve(
            PRODUCTS_LISTING, parts, lambda: ProductService._relevance_search(db, params)
        )
        if payload["total"] > 0:
            return payload, from_cache
        return resolver.resolve(
            PRODUCTS_SEARCH_FALLBACK, parts, lambda: ProductService._substring_search(db, params)
        )

    @staticmethod
    def _browse(db: Session, params: ProductListingQuery) -> dict:
        query = ProductService._apply_listing_filters(ProductService._active_products(db), params)
        total = query.count()
        products = (
            query.order_by(Product.created_at.desc(), Product.id.desc())
            .offset(params.offset)
            .limit(params.limit)
            .all()
        )
        return _page([product_card(p) for p in products], total, params.page, params.limit, search_mode="none")

    @staticmethod
    def _relevance_search(db: Session, params: ProductListingQuery) -> dict:
        words = _WORD.findall(params.search)
        if not words:
            return _page([], 0, params.page, params.limit, search_mode="relevance")

        score = _relevance_score(words)
        query = ProductService._apply_listing_filters(ProductService._active_products(db), params)
        query = query.filter(score > 0)
        total = query.count()
        products = (
            query.order_by(score.desc(), Product.created_at.desc(), Product.id.desc())
            .offset(params.offset)
            .limit(params.limit)
            .all()
        )
        return _page(
            [product_card(p) for p in products], total, params.page, params.limit, search_mode="relevance"
        )

    @staticmethod
    def _substring_search(db: Session, params: ProductListingQuery) -> dict:
        pattern = f"%{_escape_like(params.search)}%"
        query = ProductService._apply_listing_filters(ProductService._active_products(db), params)
        query = query.filter(
            or_(
                Product.name.ilike(pattern, escape="\\"),
                cast(Product.tags, String).ilike(pattern, escape="\\"),
            )
        )
        total = query.count()
        products = (
            query.order_by(Product.created_at.desc(), Product.id.desc())
            .offset(params.offset)
            .limit(params.limit)
            .all()
        )
        return _page(
            [product_card(p) for p in products], total, params.page, params.limit, search_mode="substring"
        )

    @staticmethod
    def get_product_by_slug(db: Session, resolver: ReadThroughResolver, slug: str) -> Tuple[dict, bool]:
        slug = slug.strip().lower()

        def load() -> dict:
            product = (
                ProductService._active_products(db)
                .options(selectinload(Product.category), selectinload(Product.subcategory))
                .filter(Product.slug == slug)
                .first()
            )
            if not product:
                raise NotFound("Product not found")
            return product_detail(product)

        return resolver.resolve(PRODUCT_BY_SLUG, (slug,), load)

    @staticmethod
    def products_by_category_slug(
        db: Session,
        resolver: ReadThroughResolver,
        params: CategorySlugPageQuery,
    ) -> Tuple[dict, bool]:

        def load() -> dict:
            live = db.query(Category).filter(Category.is_deleted == False, Category.is_active == True)
            category = live.filter(Category.slug == params.category_slug).first()
            if not category:
                raise NotFound("Category not found")

            query = ProductService._active_products(db).filter(
                or_(Product.category_id == category.id, Product.subcategory_id == category.id)
            )
            subcategory = None
            if params.subcategory_slug:
                subcategory = live.filter(
                    Category.slug == params.subcategory_slug,
                    Category.parent_id == category.id,
                ).first()
                if not subcategory:
                    raise NotFound("Subcategory not found")
                query = query.filter(Product.subcategory_id == subcategory.id)

            total = query.count()
            products = (
                query.order_by(Product.created_at.desc(), Product.id.desc())
                .offset(params.offset)
                .limit(params.limit)
                .all()
            )
            return _page(
                [product_card(p) for p in products],
                total,
                params.page,
                params.limit,
                category=_category_ref(category),
                subcategory=_category_ref(subcategory),
            )

        return resolver.resolve(CATEGORY_PRODUCT_PAGES, params.cache_parts(), load)

    @staticmethod
    def search_suggestions(
        db: Session,
        resolver: ReadThroughResolver,
        params: SuggestionQuery,
    ) -> Tuple[dict, bool]:

        def load() -> dict:
            prefix = _escape_like(params.term)
            lowered = func.lower(Product.name, type_=String)
            base = db.query(Product).options(selectinload(Product.images)).filter(
                Product.status == ProductStatus.ACTIVE
            )
            ordering = (Product.rating.desc(), Product.created_at.desc(), Product.id.desc())

            products = (
                base.filter(
                    or_(
                        lowered.like(f"{prefix}%", escape="\\"),
                        lowered.like(f"% {prefix}%", escape="\\"),
                    )
                )
                .order_by(*ordering)
                .limit(params.limit)
                .all()
            )
            fallback = False
            if not products:
                fallback = True
                pattern = f"%{prefix}%"
                products = (
                    base.filter(
                        or_(
                            Product.name.ilike(pattern, escape="\\"),
                            Product.brand.ilike(pattern, escape="\\"),
                            cast(Product.tags, String).ilike(pattern, escape="\\"),
                        )
                    )
                    .order_by(*ordering)
                    .limit(params.limit)
                    .all()
                )
            return {
                "term": params.term,
                "fallback": fallback,
                "suggestions": [
                    {
                        "name": product.name,
                        "slug": product.slug,
                        "image": product.images[0].image_url if product.images else None,
                    }
                    for product in products
                ],
            }

        return resolver.resolve(SEARCH_SUGGESTIONS, params.cache_parts(), load)

    @staticmethod
    def count_products(db: Session) -> dict:
        total = db.query(func.count(Product.id)).scalar() or 0
        active = db.query(func.count(Product.id)).filter(Product.status == ProductStatus.ACTIVE).scalar() or 0
        return {"total": total, "active": active}

    # ============= MUTATIONS =============

    @staticmethod
    def create_product(
        db: Session,
        data: ProductCreate,
        images: List[UploadFile],
        media: MediaStorage,
        coordinator: InvalidationCoordinator,
        search_index: SearchIndex,
    ) -> dict:
        ProductService._resolve_categories(db, data.category_id, data.subcategory_id)
        ProductService._check_image_count(len(images))
        ProductService._ensure_name_available(db, data.name)

        urls = upload_batch(media, images)

        def write() -> Product:
            ProductService._ensure_name_available(db, data.name)
            product = Product(
                name=data.name,
                slug=IdentifierAllocator.allocate_slug(db, Product, data.name, reserved=RESERVED_SLUGS),
                product_code=IdentifierAllocator.allocate_product_code(db, Product, data.name),
                category_id=data.category_id,
                subcategory_id=data.subcategory_id,
                brand=data.brand,
                description=data.description,
                discount=data.discount,
                status=data.status,
                is_featured=data.is_featured,
                is_hot_product=data.is_hot_product,
                is_best_seller=data.is_best_seller,
                tags=data.tags,
                additional_info=data.additional_info,
                variants=[
                    ProductVariant(position=position, **variant.model_dump())
                    for position, variant in enumerate(data.variants)
                ],
                images=[ProductImage(image_url=url, display_order=idx) for idx, url in enumerate(urls)],
            )
            db.add(product)
            return product

        try:
            product = persist_with_identifiers(db, write)
        except Exception:
            db.rollback()
            discard_media(media, urls)
            raise

        logger.info("product_created", product_id=product.id, slug=product.slug, product_code=product.product_code)
        coordinator.invalidate(Mutation.PRODUCT_CREATED, product_slug_keys([product.slug]))
        sync_product(search_index, product)
        return product_detail(product)

    @staticmethod
    def update_product(
        db: Session,
        product_id: int,
        data: ProductUpdate,
        new_images: List[UploadFile],
        media: MediaStorage,
        coordinator: InvalidationCoordinator,
        search_index: SearchIndex,
    ) -> dict:
        product = ProductService._get_product(db, product_id)
        old_slug = product.slug
        fields = data.model_fields_set

        if "category_id" in fields or "subcategory_id" in fields:
            category_id = data.category_id if "category_id" in fields else product.category_id
            subcategory_id = data.subcategory_id if "subcategory_id" in fields else product.subcategory_id
            ProductService._resolve_categories(db, category_id, subcategory_id)

        current_urls = [image.image_url for image in product.images]
        removed = set(data.remove_images)
        unknown = removed - set(current_urls)
        if unknown:
            raise ValidationError("Images do not belong to this product", [{"images": sorted(unknown)}])
        ProductService._check_image_count(len(current_urls) - len(removed) + len(new_images))

        name_changed = data.name is not None and data.name != product.name
        if name_changed:
            ProductService._ensure_name_available(db, data.name, exclude_id=product.id)

        updates = data.model_dump(exclude_unset=True, exclude={"name", "variants", "remove_images"})
        new_urls = upload_batch(media, new_images) if new_images else []

        def write() -> Product:
            if name_changed:
                ProductService._ensure_name_available(db, data.name, exclude_id=product.id)
                product.name = data.name
                product.slug = IdentifierAllocator.allocate_slug(
                    db, Product, data.name, exclude_id=product.id, reserved=RESERVED_SLUGS
                )
                product.product_code = IdentifierAllocator.allocate_product_code(
                    db, Product, data.name, exclude_id=product.id
                )
            for field, value in updates.items():
                setattr(product, field, value)
            if data.variants is not None:
                ProductService._sync_variants(db, product, data.variants)
            if removed or new_urls:
                kept = [image for image in product.images if image.image_url not in removed]
                for idx, image in enumerate(kept):
                    image.display_order = idx
                product.images = kept + [
                    ProductImage(image_url=url, display_order=len(kept) + idx) for idx, url in enumerate(new_urls)
                ]
            return product

        try:
            product = persist_with_identifiers(db, write)
        except Exception:
            db.rollback()
            discard_media(media, new_urls)
            raise

        discard_media(media, sorted(removed))
        logger.info("product_updated", product_id=product.id, slug=product.slug)
        coordinator.invalidate(Mutation.PRODUCT_UPDATED, product_slug_keys([old_slug, product.slug]))
        sync_product(search_index, product)
        return product_detail(product)

    @staticmethod
    def replace_images(
        db: Session,
        product_id: int,
        images: List[UploadFile],
        media: MediaStorage,
        coordinator: InvalidationCoordinator,
        search_index: SearchIndex,
    ) -> dict:
        product = ProductService._get_product(db, product_id)
        ProductService._check_image_count(len(images))
        old_urls = [image.image_url for image in product.images]

        urls = upload_batch(media, images)
        try:
            product.images = [ProductImage(image_url=url, display_order=idx) for idx, url in enumerate(urls)]
            db.commit()
        except Exception:
            db.rollback()
            discard_media(media, urls)
            raise
        db.refresh(product)

        discard_media(media, old_urls)
        coordinator.invalidate(Mutation.PRODUCT_UPDATED, product_slug_keys([product.slug]))
        sync_product(search_index, product)
        return product_detail(product)

    @staticmethod
    def delete_product(
        db: Session,
        product_id: int,
        media: MediaStorage,
        coordinator: InvalidationCoordinator,
        search_index: SearchIndex,
    ) -> None:
        product = ProductService._get_product(db, product_id)
        slug = product.slug
        urls = [image.image_url for image in product.images]

        db.query(CartItem).filter(CartItem.product_id == product.id).delete(synchronize_session=False)
        db.delete(product)
        db.commit()

        discard_media(media, urls)
        logger.info("product_deleted", product_id=product_id, slug=slug)
        coordinator.invalidate(Mutation.PRODUCT_DELETED, product_slug_keys([slug]))
        drop_product(search_index, product_id)
