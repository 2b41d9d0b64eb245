"""LifecycleConfig — tunables for the lifecycle engine."""

from __future__ import annotations

from dataclasses import dataclass

from .exceptions import InvalidArgumentError


@dataclass
class LifecycleConfig:
    """Configuration shared by the version, trash and link managers."""

    retention_days: int = 60
    """Days a soft-deleted item stays recoverable before the purge sweep takes it."""

    purge_interval_seconds: float = 24 * 60 * 60
    """Delay between two purge sweeps run by ``PurgeScheduler``."""

    release_blobs: bool = True
    """If True, purging a file also deletes its content blob."""

    link_cache_ttl_seconds: float = 5 * 60
    """Lifetime of a cached per-resource link listing."""

    link_cache_max_entries: int = 1024
    """Upper bound on cached link listings; oldest entries are evicted first."""

    link_retry_limit: int = 5
    """Attempts for the use-counter compare-and-swap in ``resolve_link``."""

    version_retry_limit: int = 5
    """Attempts for the lineage-head compare-and-swap during upload."""

    write_retry_limit: int = 5
    """Attempts for compare-and-swap record transitions (supersede, trash, restore, purge)."""

    in_flight_grace_seconds: float = 30.0
    """How long a lineage head may name a not-yet-written file before it is ignored."""

    password_hash_rounds: int = 12
    """bcrypt cost factor for link passwords."""

    signed_url_ttl_seconds: int = 15 * 60
    """Default lifetime of signed blob URLs."""

    def __post_init__(self) -> None:
        if self.retention_days < 0:
            raise InvalidArgumentError("retention_days must be >= 0")
        if self.purge_interval_seconds <= 0:
            raise InvalidArgumentError("purge_interval_seconds must be > 0")
        if self.link_cache_ttl_seconds < 0:
            raise InvalidArgumentError("link_cache_ttl_seconds must be >= 0")
        if self.link_cache_max_entries < 1:
            raise InvalidArgumentError("link_cache_max_entries must be >= 1")
        if min(self.link_retry_limit, self.version_retry_limit, self.write_retry_limit) < 1:
            raise InvalidArgumentError("retry limits must be >= 1")
        if not 4 <= self.password_hash_rounds <= 31:
            raise InvalidArgumentError("password_hash_rounds must be between 4 and 31")
