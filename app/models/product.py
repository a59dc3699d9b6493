from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Text, Enum, JSON, Index, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class ProductStatus(str, enum.Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    # Nulled when the referenced category is deleted
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    subcategory_id = Column(Integer, ForeignKey("categories.id"), nullable=True)

    name = Column(String(200), unique=True, nullable=False, index=True)
    slug = Column(String(250), unique=True, nullable=False, index=True)
    product_code = Column(String(32), unique=True, nullable=False, index=True)
    brand = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)

    # Pricing lives on variants; discount is a percentage applied to every variant
    discount = Column(Float, default=0.0, nullable=False)

    # Ratings (materialized from reviews)
    rating = Column(Float, default=0.0, nullable=False)
    review_count = Column(Integer, default=0, nullable=False)

    status = Column(Enum(ProductStatus), default=ProductStatus.ACTIVE, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    is_hot_product = Column(Boolean, default=False, nullable=False)
    is_best_seller = Column(Boolean, default=False, nullable=False)

    tags = Column(JSON, nullable=False, default=list)
    additional_info = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    category = relationship("Category", foreign_keys=[category_id])
    subcategory = relationship("Category", foreign_keys=[subcategory_id])
    images = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.display_order",
    )
    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.position",
    )
    reviews = relationship("Review", back_populates="product", cascade="all, delete-orphan")

# Composite indexes for performance
Index("idx_product_category_status", Product.category_id, Product.status)
Index("idx_product_subcategory_status", Product.subcategory_id, Product.status)
Index("idx_product_created_at", Product.created_at)


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    image_url = Column(String(500), nullable=False)
    display_order = Column(Integer, default=0)

    # Relationships
    product = relationship("Product", back_populates="images")


class ProductVariant(Base):
    """Size + Color + Price + Stock per variant"""
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, default=0, nullable=False)

    size = Column(String(50), nullable=False)
    color = Column(String(50), nullable=False)
    price = Column(Float, nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    packaging = Column(String(50), default="Bottle")

    # Relationships
    product = relationship("Product", back_populates="variants")

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_product_variants_price_positive"),
        CheckConstraint("stock_quantity >= 0", name="ck_product_variants_stock_non_negative"),
    )

    def price_after_discount(self, discount: float) -> float:
        if not discount:
            return round(self.price, 2)
        return round(self.price * (1 - discount / 100), 2)
