from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional
from datetime import datetime

from app.models.category import CategoryType

CATEGORY_IMAGE_COUNT = 2


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = " ".join(value.split())
    if not value:
        raise ValueError("Category name cannot be empty")
    return value


class CategoryCreate(BaseModel):
    name: str = Field(..., max_length=100)
    description: str = Field("", max_length=500)
    type: CategoryType = CategoryType.MAIN
    parent_id: Optional[int] = None
    display_order: int = Field(0, ge=0)
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: Optional[str]) -> Optional[str]:
        return _clean_name(value)

    @model_validator(mode="after")
    def check_hierarchy(self):
        if self.type == CategoryType.SUB and self.parent_id is None:
            raise ValueError("Subcategory requires parent_id")
        if self.type == CategoryType.MAIN and self.parent_id is not None:
            raise ValueError("Main category cannot have a parent")
        return self


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    type: Optional[CategoryType] = None
    parent_id: Optional[int] = None
    display_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: Optional[str]) -> Optional[str]:
        return _clean_name(value)


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    parent_id: Optional[int]
    name: str
    slug: str
    description: Optional[str]
    type: CategoryType
    display_order: int
    images: List[str]
    is_active: bool
    is_deleted: bool
    created_at: datetime
    updated_at: Optional[datetime]
