from pydantic import BaseModel, Field, field_validator
from typing import Optional
import bleach

MIN_COMMENT_LENGTH = 10


def _sanitize(value: str) -> str:
    value = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
    if len(value) < MIN_COMMENT_LENGTH:
        raise ValueError(f"Comment must be at least {MIN_COMMENT_LENGTH} characters")
    return value


class ReviewCreate(BaseModel):
    product_id: int
    rating: int = Field(..., ge=1, le=5, description="Rating must be between 1 and 5")
    comment: str = Field(..., max_length=1000)

    @field_validator("comment")
    @classmethod
    def sanitize_comment(cls, value: str) -> str:
        return _sanitize(value)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5, description="Rating must be between 1 and 5")
    comment: Optional[str] = Field(None, max_length=1000)

    @field_validator("comment")
    @classmethod
    def sanitize_comment(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _sanitize(value)
