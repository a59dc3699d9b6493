import json
import structlog
from typing import Any, Callable, Sequence, Tuple

from fastapi.encoders import jsonable_encoder

from app.cache.namespaces import Namespace
from app.cache.store import CacheStore
from app.core.exceptions import CacheUnavailable

logger = structlog.get_logger(__name__)


def serialize(payload: Any) -> str:
    return json.dumps(jsonable_encoder(payload), sort_keys=True, separators=(",", ":"))


class ReadThroughResolver:
    """
    Read path shared by every cached query shape.

    A cache failure on ``get`` is a miss; a failure on ``set`` is logged and
    dropped. The loader runs a single store query and must not touch the cache.
    The value returned on a miss is the deserialized form of what was written,
    so a miss and the following hit return identical payloads.
    """

    def __init__(self, store: CacheStore):
        self.store = store

    def resolve(
        self,
        namespace: Namespace,
        parts: Sequence[Any],
        loader: Callable[[], Any],
    ) -> Tuple[Any, bool]:
        key = namespace.key(*parts)

        cached = self._get(key)
        if cached is not None:
            try:
                return json.loads(cached), True
            except ValueError:
                logger.warning("cache_entry_corrupt", key=key)

        payload = loader()
        serialized = serialize(payload)
        self._set(key, serialized, namespace.ttl)
        return json.loads(serialized), False

    def _get(self, key: str):
        try:
            return self.store.get(key)
        except CacheUnavailable as exc:
            logger.warning("cache_get_failed", key=key, error=str(exc))
            return None

    def _set(self, key: str, value: str, ttl: int) -> None:
        try:
            self.store.set(key, value, ttl)
        except CacheUnavailable as exc:
            logger.warning("cache_set_failed", key=key, error=str(exc))
