import re
import structlog
from typing import Callable, FrozenSet, Optional, TypeVar

from slugify import slugify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import DuplicateIdentifier, StoreUnavailable, ValidationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")

MAX_SUFFIX = 10000
PRODUCT_CODE_BASE_LENGTH = 10


def slug_candidate(base: str, attempt: int) -> str:
    return base if attempt == 0 else f"{base}-{attempt}"


def product_code_candidate(base: str, attempt: int) -> str:
    return f"{base}-{attempt + 1:03d}"


class IdentifierAllocator:
    """
    Allocates human-readable unique identifiers by probing the store.

    The probe loop only avoids collisions in the common case; the unique
    index in the store is what guarantees uniqueness. Callers commit through
    ``persist_with_identifiers`` so a lost race is retried once.
    """

    @staticmethod
    def slug_base(name: str) -> str:
        base = slugify(name or "")
        if not base:
            raise ValidationError("Name must contain at least one letter or digit", [{"field": "name"}])
        return base

    @staticmethod
    def product_code_base(name: str) -> str:
        base = _NON_ALNUM.sub("", name or "")[:PRODUCT_CODE_BASE_LENGTH].upper()
        if not base:
            raise ValidationError("Name must contain at least one letter or digit", [{"field": "name"}])
        return base

    @staticmethod
    def allocate(
        base: str,
        is_taken: Callable[[str], bool],
        candidate: Callable[[str, int], str] = slug_candidate,
        field: str = "slug",
    ) -> str:
        for attempt in range(MAX_SUFFIX):
            value = candidate(base, attempt)
            try:
                taken = is_taken(value)
            except SQLAlchemyError as exc:
                logger.error("identifier_check_failed", field=field, candidate=value, error=str(exc))
                raise StoreUnavailable() from exc
            if not taken:
                return value
        raise DuplicateIdentifier(field, base)

    @staticmethod
    def column_check(db: Session, model, column, exclude_id: Optional[int] = None) -> Callable[[str], bool]:
        """Uniqueness probe over ``column``, ignoring the row being updated."""

        def is_taken(value: str) -> bool:
            query = db.query(model.id).filter(column == value)
            if exclude_id is not None:
                query = query.filter(model.id != exclude_id)
            return query.first() is not None

        return is_taken

    @staticmethod
    def allocate_slug(
        db: Session,
        model,
        name: str,
        exclude_id: Optional[int] = None,
        reserved: FrozenSet[str] = frozenset(),
    ) -> str:
        """``reserved`` slugs are treated as taken, e.g. words used by fixed routes."""
        column_taken = IdentifierAllocator.column_check(db, model, model.slug, exclude_id)

        def is_taken(value: str) -> bool:
            return value in reserved or column_taken(value)

        return IdentifierAllocator.allocate(
            IdentifierAllocator.slug_base(name),
            is_taken,
            slug_candidate,
            field="slug",
        )

    @staticmethod
    def allocate_product_code(db: Session, model, name: str, exclude_id: Optional[int] = None) -> str:
        return IdentifierAllocator.allocate(
            IdentifierAllocator.product_code_base(name),
            IdentifierAllocator.column_check(db, model, model.product_code, exclude_id),
            product_code_candidate,
            field="product_code",
        )


def persist_with_identifiers(db: Session, write: Callable[[], T], field: str = "slug") -> T:
    """
    Apply ``write`` and commit, re-running it once if the commit loses a race.

    ``write`` must allocate its identifiers and stage every change on each
    call: after a rollback, pending objects are gone and loaded ones are
    expired, so nothing from the first attempt survives.
    """
    for attempt in (1, 2):
        entity = write()
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            logger.warning("identifier_race_lost", field=field, attempt=attempt, error=str(exc.orig))
            if attempt == 2:
                raise DuplicateIdentifier(field) from exc
            continue
        db.refresh(entity)
        return entity
