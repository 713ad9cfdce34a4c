import logging
import os
import shutil
from typing import Callable, Mapping, NamedTuple, Optional

from store import HierarchicalStore

DEFAULT_QUOTA_BYTES = int(os.getenv("DEFAULT_QUOTA_BYTES", 1024 * 1024 * 1024))  # 1 GB default

logger = logging.getLogger(__name__)

QuotaSource = Callable[[], Mapping[str, int]]


class UsageReport(NamedTuple):
    used_bytes: int
    node_count: int
    quota_bytes: int
    percent: float


def disk_quota_source(path) -> QuotaSource:
    """Quota estimate from the size of the filesystem holding ``path``."""

    def estimate():
        return {"quota_bytes": shutil.disk_usage(path).total}

    return estimate


class UsageMeter:
    def __init__(self, store: HierarchicalStore, quota_source: Optional[QuotaSource] = None,
                 default_quota: int = DEFAULT_QUOTA_BYTES):
        self.store = store
        self.quota_source = quota_source
        self.default_quota = default_quota

    def quota(self) -> int:
        if self.quota_source is None:
            return self.default_quota

        try:
            quota = int(self.quota_source()["quota_bytes"])
        except Exception as exc:
            # The estimate is advisory, an unavailable source is not an error.
            logger.warning("Quota estimate unavailable, using default: %s", exc)
            return self.default_quota

        if quota <= 0:
            return self.default_quota
        return quota

    def refresh(self) -> UsageReport:
        usage = self.store.aggregate_usage()
        quota = self.quota()
        percent = min(usage.used_bytes / quota * 100, 100.0)
        return UsageReport(
            used_bytes=usage.used_bytes,
            node_count=usage.node_count,
            quota_bytes=quota,
            percent=max(percent, 0.0),
        )
