"""LocalBlobStore — content blobs on local disk with HMAC-signed URLs."""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import hmac
import os
import secrets
import tempfile
import time
from pathlib import Path
from urllib.parse import parse_qs, quote, unquote, urlsplit

from filekeep.exceptions import InvalidArgumentError, NotFoundError, StoreUnavailableError
from filekeep.utils import normalize_blob_path

_CONTENT_TYPE_SUFFIX = ".content-type"


class LocalBlobStore:
    """Blob storage rooted at *root_dir*.

    Implements the ``BlobStore`` protocol.  Disk I/O runs in
    ``asyncio.to_thread``.  Paths are normalized and confined to the root,
    so ``../`` segments cannot escape it.  The content type of each blob is
    kept in a sidecar file next to it.

    Signed URLs have the form ``{base_url}/{path}?expires=..&signature=..``
    where the signature is HMAC-SHA256 over ``path`` and ``expires``.
    """

    def __init__(
        self,
        root_dir: Path | str,
        *,
        base_url: str = "/blobs",
        signing_key: bytes | None = None,
    ) -> None:
        self.root_dir = Path(root_dir).resolve()
        self.base_url = base_url.rstrip("/")
        self._signing_key = signing_key or secrets.token_bytes(32)

        if not self.root_dir.exists():
            raise FileNotFoundError(f"Blob root does not exist: {self.root_dir}")
        if not self.root_dir.is_dir():
            raise NotADirectoryError(f"Blob root is not a directory: {self.root_dir}")

    # =========================================================================
    # Path Resolution
    # =========================================================================

    def _resolve(self, path: str) -> Path:
        try:
            rel = normalize_blob_path(path)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        candidate = (self.root_dir / rel).resolve()
        if candidate != self.root_dir and self.root_dir not in candidate.parents:
            raise InvalidArgumentError(f"Blob path escapes root: {path!r}")
        return candidate

    # =========================================================================
    # BlobStore protocol
    # =========================================================================

    async def put_blob(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            # Write to a temp file then rename so readers never see a partial blob.
            fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp, target)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
                raise
            target.with_name(target.name + _CONTENT_TYPE_SUFFIX).write_text(
                content_type, "utf-8"
            )

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StoreUnavailableError(f"Blob write failed for {path}: {e}") from e

    async def get_blob(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            raise NotFoundError(f"Blob not found: {path}") from e
        except OSError as e:
            raise StoreUnavailableError(f"Blob read failed for {path}: {e}") from e

    async def get_content_type(self, path: str) -> str | None:
        sidecar = self._resolve(path)
        sidecar = sidecar.with_name(sidecar.name + _CONTENT_TYPE_SUFFIX)
        try:
            return await asyncio.to_thread(sidecar.read_text, "utf-8")
        except FileNotFoundError:
            return None

    async def delete_blob(self, path: str) -> bool:
        target = self._resolve(path)

        def _delete() -> bool:
            existed = target.exists()
            target.unlink(missing_ok=True)
            target.with_name(target.name + _CONTENT_TYPE_SUFFIX).unlink(missing_ok=True)
            return existed

        try:
            return await asyncio.to_thread(_delete)
        except OSError as e:
            raise StoreUnavailableError(f"Blob delete failed for {path}: {e}") from e

    async def get_signed_url(self, path: str, ttl: int) -> str:
        if ttl <= 0:
            raise InvalidArgumentError("Signed URL ttl must be positive")
        rel = self._resolve(path).relative_to(self.root_dir).as_posix()
        expires = int(time.time()) + int(ttl)
        signature = self._sign(rel, expires)
        return f"{self.base_url}/{quote(rel)}?expires={expires}&signature={signature}"

    # =========================================================================
    # Signing
    # =========================================================================

    def _sign(self, rel_path: str, expires: int) -> str:
        message = f"{rel_path}\n{expires}".encode()
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def verify_signed_url(self, url: str, *, now: float | None = None) -> str | None:
        """Return the blob path if *url* carries a valid, unexpired signature."""
        parts = urlsplit(url)
        prefix = urlsplit(self.base_url).path + "/"
        if not parts.path.startswith(prefix):
            return None
        rel = unquote(parts.path[len(prefix):])
        query = parse_qs(parts.query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, IndexError, ValueError):
            return None
        if expires < (now if now is not None else time.time()):
            return None
        if not hmac.compare_digest(signature, self._sign(rel, expires)):
            return None
        return rel
