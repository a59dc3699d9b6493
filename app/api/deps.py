import structlog
from dataclasses import dataclass
from fastapi import Depends, Request

from app.cache.invalidation import InvalidationCoordinator
from app.cache.resolver import ReadThroughResolver
from app.cache.store import CacheStore
from app.core.exceptions import Forbidden, Unauthorized
from app.core.security import decode_token
from app.services.media_storage import LocalMediaStorage, MediaStorage
from app.services.search_index import LoggingSearchIndex, SearchIndex
from app.tasks.cache_tasks import schedule_invalidation_retry

logger = structlog.get_logger()

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"


@dataclass(frozen=True)
class CurrentUser:
    """Identity taken from token claims; accounts live in the auth service."""

    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def get_current_user(request: Request) -> CurrentUser:
    """Get current authenticated user from cookie or bearer token."""
    token = None

    if request.cookies.get("access_token"):
        token = request.cookies.get("access_token")
    elif request.headers.get("Authorization"):
        auth_header = request.headers.get("Authorization")
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]

    if not token:
        raise Unauthorized()

    payload = decode_token(token)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise Unauthorized("Invalid authentication credentials")

    role = payload.get("role", ROLE_CUSTOMER)
    if role not in {ROLE_ADMIN, ROLE_CUSTOMER}:
        raise Unauthorized("Invalid authentication credentials")

    return CurrentUser(id=user_id, role=role)


def require_admin(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current_user.is_admin:
        raise Forbidden("Admin access required")

    logger.info(
        "admin_action",
        action=f"{request.method} {request.url.path}",
        admin_user_id=current_user.id,
        client_ip=request.client.host if request.client else None,
    )
    return current_user


# ============= CACHE & COLLABORATORS =============

def get_cache_store(request: Request) -> CacheStore:
    return request.app.state.cache_store


def get_resolver(store: CacheStore = Depends(get_cache_store)) -> ReadThroughResolver:
    return ReadThroughResolver(store)


def get_coordinator(store: CacheStore = Depends(get_cache_store)) -> InvalidationCoordinator:
    return InvalidationCoordinator(store, on_failure=schedule_invalidation_retry)


def get_media_storage() -> MediaStorage:
    return LocalMediaStorage()


def get_search_index() -> SearchIndex:
    return LoggingSearchIndex()
