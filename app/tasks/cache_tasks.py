from typing import Sequence

from celery import shared_task
from celery.utils.log import get_task_logger

from app.cache.store import build_cache_store
from app.core.config import settings
from app.core.exceptions import CacheUnavailable

logger = get_task_logger(__name__)


@shared_task(bind=True, max_retries=5)
def retry_invalidation(self, targets):
    """
    Re-run prefix deletes that failed right after a mutation.

    Exact keys are retried as prefixes; clearing a few extra entries is harmless.
    """
    store = build_cache_store()
    failed = []
    deleted = 0
    for target in targets:
        try:
            deleted += store.delete_by_prefix(target)
        except CacheUnavailable as exc:
            logger.warning("Cache invalidation retry failed for %s: %s", target, exc)
            failed.append(target)

    if failed:
        raise self.retry(args=[failed], countdown=settings.CACHE_INVALIDATION_RETRY_DELAY)
    return {"deleted": deleted, "targets": len(targets)}


@shared_task(bind=True, max_retries=3)
def monitor_cache_memory(self):
    """
    Clear the whole cache when it grows past CACHE_MAX_MEMORY_MB.
    Runs periodically via Celery Beat.
    """
    store = build_cache_store()
    try:
        stats = store.stats()
        usage = stats.get("memory_usage_mb", 0)
        if usage <= settings.CACHE_MAX_MEMORY_MB:
            return {"cleared": False, "memory_usage_mb": usage}
        deleted = store.delete_all()
    except CacheUnavailable as exc:
        raise self.retry(exc=exc, countdown=60)

    logger.warning(
        "Cache memory %.2fMB above %sMB threshold, cleared %s keys",
        usage,
        settings.CACHE_MAX_MEMORY_MB,
        deleted,
    )
    return {"cleared": True, "memory_usage_mb": usage, "deleted": deleted}


def schedule_invalidation_retry(targets: Sequence[str]) -> None:
    retry_invalidation.apply_async(
        args=[list(targets)],
        countdown=settings.CACHE_INVALIDATION_RETRY_DELAY,
    )
