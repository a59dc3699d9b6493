from app.models.category import Category, CategoryType
from app.models.product import Product, ProductImage, ProductVariant, ProductStatus
from app.models.cart import Cart, CartItem
from app.models.review import Review
