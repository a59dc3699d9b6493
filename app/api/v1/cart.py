from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import CurrentUser, get_current_user
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.cart import CartItemCreate, CartItemUpdate
from app.services.cart_service import CartService
from app.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
@router.get("/", response_model=dict)
def get_cart(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get user's cart"""
    return success(data=CartService.get_cart(db, current_user.id), message="Cart retrieved")


@router.post("/items", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def add_to_cart(
    request: Request,
    cart_item: CartItemCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Add item to cart; the same variant is merged into one line"""
    cart = CartService.add_item(db, current_user.id, cart_item)
    return success(data=cart, message="Item added to cart")


@router.put("/items/{variant_id}")
@limiter.limit("60/minute")
def update_cart_item(
    request: Request,
    variant_id: int,
    item_update: CartItemUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update cart item quantity"""
    cart = CartService.update_item(db, current_user.id, variant_id, item_update)
    return success(data=cart, message="Cart updated")


@router.delete("/items/{variant_id}")
def remove_from_cart(
    variant_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Remove item from cart"""
    cart = CartService.remove_item(db, current_user.id, variant_id)
    return success(data=cart, message="Item removed from cart")


@router.delete("", response_model=dict)
@router.delete("/", response_model=dict)
def clear_cart(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Clear entire cart"""
    return success(data=CartService.clear_cart(db, current_user.id), message="Cart cleared")
