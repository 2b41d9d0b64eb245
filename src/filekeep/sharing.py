"""ShareableLinkManager — token links to files and folders.

A link grants one permission tier on one resource, optionally guarded by
a password, an expiry time and a use cap.  Resolving a link checks those
guards and increments the use counter with a compare-and-swap, so
concurrent callers can never push ``current_uses`` past ``max_uses``.

Per-resource link listings are cached in-process (``LinkCache``) and the
entry for the affected resource is dropped on every mutation.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import bcrypt

from .config import LifecycleConfig
from .exceptions import (
    ConditionFailedError,
    ConflictError,
    InvalidArgumentError,
    LinkAccessError,
    NotFoundError,
)
from .models.links import ShareableLinkRecord
from .models.status import LinkPermission, ResourceType
from .store.keys import link_key, resource_index
from .types import LinkInfo, ListLinksResult, ResolvedLink
from .utils import ensure_aware, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .store.protocol import DocumentStore, StoredItem

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]

# bcrypt ignores (or rejects) input past this length.
_BCRYPT_MAX_BYTES = 72


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


# =============================================================================
# LinkCache
# =============================================================================


@dataclass
class _CacheEntry:
    links: list[LinkInfo]
    expires_at: float


class LinkCache:
    """TTL cache of link listings keyed by ``(resource_type, resource_id)``.

    Bounded by ``max_entries``; when full, the oldest entry is evicted.
    Values are copied on the way in and out.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 1024,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[CacheKey, _CacheEntry] = {}
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0, "invalidations": 0}

    def get(self, key: CacheKey) -> list[LinkInfo] | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            self._stats["hits"] += 1
            return copy.deepcopy(entry.links)
        if entry is not None:
            del self._entries[key]
        self._stats["misses"] += 1
        return None

    def set(self, key: CacheKey, links: list[LinkInfo]) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries.pop(key, None)
        self._entries[key] = _CacheEntry(
            links=copy.deepcopy(links),
            expires_at=self._clock() + self.ttl_seconds,
        )
        self._stats["sets"] += 1
        self._enforce_limit()

    def invalidate(self, key: CacheKey) -> bool:
        """Drop one resource's entry.  Returns True if it was cached."""
        if self._entries.pop(key, None) is None:
            return False
        self._stats["invalidations"] += 1
        logger.debug("Invalidated link cache for %s/%s", *key)
        return True

    def clear(self) -> None:
        self._stats["invalidations"] += len(self._entries)
        self._entries.clear()

    def stats(self) -> dict[str, int]:
        return {**self._stats, "size": len(self._entries)}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[call-overload]
        return entry is not None and entry.expires_at > self._clock()

    def _enforce_limit(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self._stats["evictions"] += 1


# =============================================================================
# ShareableLinkManager
# =============================================================================


class ShareableLinkManager:
    """Issues, resolves and maintains shareable links."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        config: LifecycleConfig | None = None,
        cache: LinkCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._config = config or LifecycleConfig()
        self._cache = cache or LinkCache(
            self._config.link_cache_ttl_seconds,
            self._config.link_cache_max_entries,
        )
        self._clock = clock

    @property
    def cache(self) -> LinkCache:
        return self._cache

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    async def create_link(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
        *,
        created_by: str = "system",
        permission: LinkPermission | str = LinkPermission.VIEW,
        is_public: bool = False,
        password: str | None = None,
        expires_at: datetime | None = None,
        max_uses: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LinkInfo:
        rtype = _parse_resource_type(resource_type)
        if not resource_id:
            raise InvalidArgumentError("Resource ID is required")
        tier = _parse_permission(permission)
        _validate_max_uses(max_uses)
        if expires_at is not None:
            expires_at = ensure_aware(expires_at)
        password_hash = await self._hash_password(password) if password is not None else None

        now = self._clock()
        record = ShareableLinkRecord(
            resource_type=rtype,
            resource_id=resource_id,
            permission=tier,
            is_public=is_public,
            password_hash=password_hash,
            expires_at=expires_at,
            max_uses=max_uses,
            created_by=created_by or "system",
            attributes=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        await self._store.put(
            link_key(record.id),
            record.model_dump(mode="json"),
            index_key=resource_index(rtype, resource_id),
            if_revision=0,
        )
        self._cache.invalidate((rtype.value, resource_id))
        logger.info(
            "Created %s link on %s %s (expires=%s, max_uses=%s)",
            tier.value,
            rtype.value,
            resource_id,
            expires_at.isoformat() if expires_at else None,
            max_uses,
        )
        return _link_info(record)

    async def get_link(self, token: str) -> LinkInfo:
        item = await self._get_item(token)
        return _link_info(ShareableLinkRecord.model_validate(item.data))

    async def list_links_for_resource(
        self,
        resource_type: ResourceType | str,
        resource_id: str,
    ) -> ListLinksResult:
        """All links on a resource, newest first.  Served from cache when fresh."""
        rtype = _parse_resource_type(resource_type)
        if not resource_id:
            raise InvalidArgumentError("Resource ID is required")
        key = (rtype.value, resource_id)

        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Link cache hit for %s/%s", *key)
            return ListLinksResult(
                resource_type=rtype.value,
                resource_id=resource_id,
                links=cached,
                cached=True,
            )

        items = await self._store.query_index(resource_index(rtype, resource_id))
        links = [_link_info(ShareableLinkRecord.model_validate(i.data)) for i in items]
        links.sort(key=lambda link: ensure_aware(link.created_at or self._clock()), reverse=True)
        self._cache.set(key, links)
        return ListLinksResult(resource_type=rtype.value, resource_id=resource_id, links=links)

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    async def resolve_link(self, token: str, password: str | None = None) -> ResolvedLink:
        """Check a link's guards and count one use.

        Checks run in order: missing or inactive (``NotFoundError``), then
        expired, exhausted and password (``LinkAccessError``).  The use
        counter is incremented with a compare-and-swap, re-checking the
        guards against the latest stored state on every attempt.
        """
        verified_hash: str | None = None
        for attempt in range(self._config.link_retry_limit):
            item = await self._get_item(token)
            link = ShareableLinkRecord.model_validate(item.data)
            if not link.is_active:
                raise NotFoundError(f"Link {token} is inactive", public_message="Link not found")

            now = self._clock()
            if link.expires_at is not None and now > ensure_aware(link.expires_at):
                raise LinkAccessError(
                    f"Link {token} expired at {link.expires_at}",
                    reason="expired",
                    public_message="Link has expired",
                )
            if link.max_uses is not None and link.current_uses >= link.max_uses:
                raise LinkAccessError(
                    f"Link {token} used {link.current_uses}/{link.max_uses} times",
                    reason="exhausted",
                    public_message="Link usage limit reached",
                )
            if link.password_hash and link.password_hash != verified_hash:
                if not await self._check_password(password, link.password_hash):
                    raise LinkAccessError(
                        f"Password check failed for link {token}",
                        reason="password",
                        public_message="Password required or incorrect",
                    )
                verified_hash = link.password_hash

            link.current_uses += 1
            link.updated_at = now
            try:
                await self._store.put(
                    item.key,
                    link.model_dump(mode="json"),
                    index_key=item.index_key,
                    if_revision=item.revision,
                )
            except ConditionFailedError:
                logger.debug("Link %s use counter changed concurrently (attempt %d)", token, attempt + 1)
                continue

            self._cache.invalidate((link.resource_type.value, link.resource_id))
            logger.debug("Resolved link %s (%d use(s))", token, link.current_uses)
            return ResolvedLink(
                link_id=link.id,
                resource_type=link.resource_type.value,
                resource_id=link.resource_id,
                permission=link.permission.value,
                current_uses=link.current_uses,
                max_uses=link.max_uses,
                expires_at=link.expires_at,
                metadata=dict(link.attributes),
            )

        raise ConflictError(
            f"Link {token} counter contention after {self._config.link_retry_limit} attempts",
            public_message="Link is busy; please retry",
        )

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    async def update_link(
        self,
        token: str,
        *,
        permission: LinkPermission | str = UNSET,
        is_public: bool = UNSET,
        password: str | None = UNSET,
        expires_at: datetime | None = UNSET,
        max_uses: int | None = UNSET,
        is_active: bool = UNSET,
        metadata: dict[str, Any] = UNSET,
    ) -> LinkInfo:
        """Change the given fields of a link.

        Omitted fields are left alone; ``password=None`` removes the
        password, ``expires_at=None`` / ``max_uses=None`` remove the limit.
        The use counter is never touched, and ``max_uses`` may not drop
        below it.
        """
        changes: dict[str, Any] = {}
        if permission is not UNSET:
            changes["permission"] = _parse_permission(permission)
        if is_public is not UNSET:
            changes["is_public"] = bool(is_public)
        if expires_at is not UNSET:
            changes["expires_at"] = ensure_aware(expires_at) if expires_at is not None else None
        if max_uses is not UNSET:
            _validate_max_uses(max_uses)
            changes["max_uses"] = max_uses
        if is_active is not UNSET:
            changes["is_active"] = bool(is_active)
        if metadata is not UNSET:
            changes["attributes"] = dict(metadata or {})
        if password is not UNSET:
            changes["password_hash"] = (
                await self._hash_password(password) if password is not None else None
            )

        for _ in range(self._config.link_retry_limit):
            item = await self._get_item(token)
            link = ShareableLinkRecord.model_validate(item.data)
            limit = changes.get("max_uses")
            if limit is not None and limit < link.current_uses:
                raise InvalidArgumentError(
                    f"max_uses {limit} is below the {link.current_uses} use(s) already made of link {token}",
                    public_message="Maximum uses cannot be lower than the current use count",
                )
            for field_name, value in changes.items():
                setattr(link, field_name, value)
            link.updated_at = self._clock()
            try:
                await self._store.put(
                    item.key,
                    link.model_dump(mode="json"),
                    index_key=item.index_key,
                    if_revision=item.revision,
                )
            except ConditionFailedError:
                continue
            self._cache.invalidate((link.resource_type.value, link.resource_id))
            logger.info("Updated link %s: %s", token, ", ".join(sorted(changes)) or "no changes")
            return _link_info(link)

        raise ConflictError(
            f"Link {token} update contention after {self._config.link_retry_limit} attempts",
            public_message="Link is busy; please retry",
        )

    async def delete_link(self, token: str) -> None:
        item = await self._get_item(token)
        link = ShareableLinkRecord.model_validate(item.data)
        await self._store.delete(item.key)
        self._cache.invalidate((link.resource_type.value, link.resource_id))
        logger.info("Deleted link %s on %s %s", token, link.resource_type.value, link.resource_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_item(self, token: str) -> StoredItem:
        if not token:
            raise InvalidArgumentError("Link token is required")
        item = await self._store.get(link_key(token))
        if item is None:
            raise NotFoundError(f"Link not found: {token}", public_message="Link not found")
        return item

    async def _hash_password(self, password: str) -> str:
        if not password:
            raise InvalidArgumentError("Link password may not be empty")
        raw = password.encode("utf-8")
        if len(raw) > _BCRYPT_MAX_BYTES:
            raise InvalidArgumentError(f"Link password may not exceed {_BCRYPT_MAX_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=self._config.password_hash_rounds)
        hashed = await asyncio.to_thread(bcrypt.hashpw, raw, salt)
        return hashed.decode("utf-8")

    async def _check_password(self, password: str | None, password_hash: str) -> bool:
        if not password:
            return False
        raw = password.encode("utf-8")
        if len(raw) > _BCRYPT_MAX_BYTES:
            return False
        try:
            return await asyncio.to_thread(bcrypt.checkpw, raw, password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Stored link password hash is malformed", exc_info=True)
            return False


def _parse_resource_type(value: ResourceType | str) -> ResourceType:
    try:
        return ResourceType(value)
    except ValueError:
        raise InvalidArgumentError(
            f"Invalid resource type: {value!r}. Must be 'file' or 'folder'"
        ) from None


def _parse_permission(value: LinkPermission | str) -> LinkPermission:
    try:
        return LinkPermission(value)
    except ValueError:
        raise InvalidArgumentError(
            f"Invalid permission: {value!r}. Must be 'view', 'download' or 'edit'"
        ) from None


def _validate_max_uses(max_uses: int | None) -> None:
    if max_uses is not None and (isinstance(max_uses, bool) or max_uses < 1):
        raise InvalidArgumentError(f"max_uses must be a positive integer, got {max_uses!r}")


def _link_info(link: ShareableLinkRecord) -> LinkInfo:
    return LinkInfo(
        id=link.id,
        resource_type=link.resource_type.value,
        resource_id=link.resource_id,
        permission=link.permission.value,
        is_public=link.is_public,
        has_password=link.password_hash is not None,
        expires_at=link.expires_at,
        max_uses=link.max_uses,
        current_uses=link.current_uses,
        created_by=link.created_by,
        is_active=link.is_active,
        metadata=dict(link.attributes),
        created_at=link.created_at,
        updated_at=link.updated_at,
    )
