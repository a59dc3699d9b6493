import structlog
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from app.cache.namespaces import Mutation, prefixes_for
from app.cache.store import CacheStore
from app.core.exceptions import CacheUnavailable

logger = structlog.get_logger(__name__)


@dataclass
class InvalidationReport:
    mutation: Mutation
    deleted: int = 0
    cleared: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class InvalidationCoordinator:
    """
    Clears the cache namespaces a committed mutation made stale.

    Runs after the store write commits. Every prefix is attempted even if an
    earlier one fails; failures are logged, reported and handed to
    ``on_failure`` for a later retry. Nothing raised here reaches the caller:
    TTL expiry bounds how long a missed prefix can stay stale.
    """

    def __init__(
        self,
        store: CacheStore,
        on_failure: Optional[Callable[[Sequence[str]], None]] = None,
    ):
        self.store = store
        self.on_failure = on_failure

    def invalidate(self, mutation: Mutation, extra_keys: Sequence[str] = ()) -> InvalidationReport:
        report = InvalidationReport(mutation=mutation)

        for prefix in prefixes_for(mutation):
            try:
                report.deleted += self.store.delete_by_prefix(prefix)
                report.cleared.append(prefix)
            except CacheUnavailable as exc:
                report.failed.append(prefix)
                logger.warning(
                    "cache_invalidation_failed",
                    mutation=mutation.value,
                    prefix=prefix,
                    error=str(exc),
                )

        for key in extra_keys:
            try:
                report.deleted += self.store.delete(key)
                report.cleared.append(key)
            except CacheUnavailable as exc:
                # a prefix delete of the exact key is equivalent on retry
                report.failed.append(key)
                logger.warning(
                    "cache_invalidation_failed",
                    mutation=mutation.value,
                    key=key,
                    error=str(exc),
                )

        if report.failed:
            self._schedule_retry(report)

        logger.info(
            "cache_invalidated",
            mutation=mutation.value,
            deleted=report.deleted,
            cleared=len(report.cleared),
            failed=len(report.failed),
        )
        return report

    def _schedule_retry(self, report: InvalidationReport) -> None:
        if self.on_failure is None:
            return
        try:
            self.on_failure(list(report.failed))
        except Exception as exc:
            # Retry hook is best-effort; TTL expiry remains the backstop.
            logger.error(
                "cache_invalidation_retry_not_scheduled",
                mutation=report.mutation.value,
                prefixes=report.failed,
                error=str(exc),
            )
