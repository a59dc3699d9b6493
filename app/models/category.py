from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, Enum, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class CategoryType(str, enum.Enum):
    MAIN = "Main"
    SUB = "Sub"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    # Unique among live categories; enforced by the category service
    name = Column(String(100), nullable=False, index=True)
    slug = Column(String(120), unique=True, nullable=False, index=True)
    description = Column(String(500), default="")
    type = Column(Enum(CategoryType), default=CategoryType.MAIN, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)
    images = Column(JSON, nullable=False, default=list)  # exactly 2 media URLs
    is_active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship("Category", back_populates="parent")


Index("idx_category_parent_live", Category.parent_id, Category.is_active, Category.is_deleted)
