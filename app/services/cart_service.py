import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import NotFound, ValidationError
from app.models.cart import Cart, CartItem
from app.models.product import Product, ProductStatus, ProductVariant
from app.schemas.cart import CartItemCreate, CartItemUpdate

logger = structlog.get_logger(__name__)


class CartService:
    """One cart per user; lines are keyed by variant. Totals are always derived."""

    @staticmethod
    def _get_or_create_cart(db: Session, user_id: int) -> Cart:
        cart = db.query(Cart).filter(Cart.user_id == user_id).first()
        if cart:
            return cart
        cart = Cart(user_id=user_id)
        db.add(cart)
        try:
            db.commit()
        except IntegrityError:
            # Another request created it first
            db.rollback()
            return db.query(Cart).filter(Cart.user_id == user_id).one()
        db.refresh(cart)
        return cart

    @staticmethod
    def _get_line(cart: Cart, variant_id: int) -> CartItem:
        line = next((item for item in cart.items if item.variant_id == variant_id), None)
        if not line:
            raise NotFound("Item not found in cart")
        return line

    @staticmethod
    def _check_stock(variant: ProductVariant, quantity: int) -> None:
        if quantity > variant.stock_quantity:
            raise ValidationError(
                f"Only {variant.stock_quantity} items available",
                [{"variant_id": variant.id, "available": variant.stock_quantity}],
            )

    @staticmethod
    def serialize(cart: Cart) -> dict:
        items = []
        total_price = 0.0
        total_items = 0
        for item in cart.items:
            product = item.product
            variant = item.variant
            unit_price = variant.price_after_discount(product.discount)
            line_total = round(unit_price * item.quantity, 2)
            available = product.status == ProductStatus.ACTIVE and variant.stock_quantity >= item.quantity
            if available:
                total_price += line_total
                total_items += item.quantity

            items.append({
                "product_id": product.id,
                "product_name": product.name,
                "product_slug": product.slug,
                "product_image": product.images[0].image_url if product.images else None,
                "variant_id": variant.id,
                "size": variant.size,
                "color": variant.color,
                "quantity": item.quantity,
                "unit_price": unit_price,
                "line_total": line_total,
                "stock_available": variant.stock_quantity,
                "available": available,
            })

        return {
            "items": items,
            "total_items": total_items,
            "total_price": round(total_price, 2),
        }

    @staticmethod
    def get_cart(db: Session, user_id: int) -> dict:
        return CartService.serialize(CartService._get_or_create_cart(db, user_id))

    @staticmethod
    def add_item(db: Session, user_id: int, data: CartItemCreate) -> dict:
        product = db.query(Product).filter(
            Product.id == data.product_id,
            Product.status == ProductStatus.ACTIVE,
        ).first()
        if not product:
            raise NotFound("Product not found")

        variant = db.query(ProductVariant).filter(
            ProductVariant.id == data.variant_id,
            ProductVariant.product_id == product.id,
        ).first()
        if not variant:
            raise NotFound("Variant not found for this product")

        cart = CartService._get_or_create_cart(db, user_id)
        line = next((item for item in cart.items if item.variant_id == variant.id), None)
        quantity = data.quantity + (line.quantity if line else 0)
        CartService._check_stock(variant, quantity)

        if line:
            line.quantity = quantity
        else:
            cart.items.append(CartItem(
                product_id=product.id,
                variant_id=variant.id,
                position=len(cart.items),
                quantity=quantity,
            ))
        db.commit()
        db.refresh(cart)

        logger.info("cart_item_added", user_id=user_id, variant_id=variant.id, quantity=quantity)
        return CartService.serialize(cart)

    @staticmethod
    def update_item(db: Session, user_id: int, variant_id: int, data: CartItemUpdate) -> dict:
        cart = CartService._get_or_create_cart(db, user_id)
        line = CartService._get_line(cart, variant_id)
        CartService._check_stock(line.variant, data.quantity)

        line.quantity = data.quantity
        db.commit()
        db.refresh(cart)
        return CartService.serialize(cart)

    @staticmethod
    def remove_item(db: Session, user_id: int, variant_id: int) -> dict:
        cart = CartService._get_or_create_cart(db, user_id)
        line = CartService._get_line(cart, variant_id)

        cart.items.remove(line)
        for position, item in enumerate(cart.items):
            item.position = position
        db.commit()
        db.refresh(cart)
        return CartService.serialize(cart)

    @staticmethod
    def clear_cart(db: Session, user_id: int) -> dict:
        cart = CartService._get_or_create_cart(db, user_id)
        cart.items.clear()
        db.commit()
        db.refresh(cart)
        return CartService.serialize(cart)
