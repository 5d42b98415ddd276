import logging
import os
import time
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx

from .background import run_sync
from .errors import StorageError

logger = logging.getLogger(__name__)


# ---- Strategy for bucketed paths ----
class ContentPathStrategy:
    """
    Places objects under:
      <audio_bucket>/<creator_id>/<content_id>/<epoch_ms>-<rand>.<ext>
      <cover_bucket>/<content_id>/<rand>.<ext>
    The first path segment is always the bucket.
    """
    def __init__(self, audio_bucket: str = "audio", cover_bucket: str = "covers"):
        self.audio_bucket = audio_bucket
        self.cover_bucket = cover_bucket

    def chapter_path(self, creator_id: int, content_item_id: int, ext: str) -> str:
        stamp = int(time.time() * 1000)
        rand = uuid.uuid4().hex[:12]
        return f"{self.audio_bucket}/{creator_id}/{content_item_id}/{stamp}-{rand}.{ext.lower().lstrip('.')}"

    def cover_path(self, content_item_id: int, ext: str) -> str:
        return f"{self.cover_bucket}/{content_item_id}/{uuid.uuid4().hex}.{ext.lower().lstrip('.')}"


def _clean_rel(path: str) -> str:
    rel = (path or "").replace("\\", "/").lstrip("/")
    parts = PurePosixPath(rel).parts
    if not parts or any(p in ("..", ".") for p in parts):
        raise StorageError(f"invalid object path: {path!r}", code="invalid_path")
    return "/".join(parts)


class ObjectStore:
    """Binary blobs keyed by path. ``delete`` of a missing path is not an error."""

    async def put(self, path: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        raise NotImplementedError

    async def exists(self, path: str) -> bool:
        raise NotImplementedError


class LocalObjectStore(ObjectStore):
    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _abspath(self, path: str) -> Path:
        root = self.root.resolve()
        target = (root / _clean_rel(path)).resolve()
        # Prevent directory escape: ensure under storage root
        if root not in target.parents:
            raise StorageError("object path escapes storage root", code="invalid_path")
        return target

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.part")
        with open(tmp, "wb") as fh:
            fh.write(data)
        os.replace(tmp, target)

    def _unlink(self, target: Path) -> None:
        root = self.root.resolve()
        target.unlink(missing_ok=True)
        # prune empty folders up to the storage root
        cur = target.parent
        while cur != root and root in cur.parents:
            try:
                cur.rmdir()
            except OSError:
                break
            cur = cur.parent

    async def put(self, path: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        target = self._abspath(path)
        try:
            await run_sync(self._write, target, data)
        except OSError as e:
            raise StorageError(f"failed to store {path}: {e}") from e

    async def delete(self, path: str) -> None:
        target = self._abspath(path)
        try:
            await run_sync(self._unlink, target)
        except OSError as e:
            raise StorageError(f"failed to delete {path}: {e}") from e

    async def exists(self, path: str) -> bool:
        return self._abspath(path).is_file()


class HttpObjectStore(ObjectStore):
    """Storage REST API client (Supabase Storage compatible)."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, *, timeout: float = 120.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=self.timeout,
                                 transport=self.transport)

    @staticmethod
    def _split(path: str) -> tuple[str, str]:
        rel = _clean_rel(path)
        bucket, _, key = rel.partition("/")
        if not key:
            raise StorageError(f"object path has no key: {path!r}", code="invalid_path")
        return bucket, key

    async def put(self, path: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        bucket, key = self._split(path)
        headers = {"Content-Type": content_type or "application/octet-stream", "x-upsert": "false"}
        try:
            async with self._client() as c:
                r = await c.post(f"/storage/v1/object/{bucket}/{key}", content=data, headers=headers)
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"upload of {path} failed: {e}") from e

    async def delete(self, path: str) -> None:
        bucket, key = self._split(path)
        try:
            async with self._client() as c:
                r = await c.request("DELETE", f"/storage/v1/object/{bucket}", json={"prefixes": [key]})
                if r.status_code == 404:
                    return
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"delete of {path} failed: {e}") from e

    async def exists(self, path: str) -> bool:
        bucket, key = self._split(path)
        try:
            async with self._client() as c:
                r = await c.head(f"/storage/v1/object/{bucket}/{key}")
        except httpx.HTTPError as e:
            raise StorageError(f"lookup of {path} failed: {e}") from e
        return r.status_code == 200


def build_object_store(settings) -> ObjectStore:
    if settings.STORAGE_BACKEND == "http":
        if not settings.STORAGE_BASE_URL:
            raise RuntimeError("STORAGE_BASE_URL must be set when STORAGE_BACKEND=http")
        return HttpObjectStore(settings.STORAGE_BASE_URL, settings.STORAGE_API_KEY,
                               timeout=settings.STORAGE_TIMEOUT_SEC)
    return LocalObjectStore(Path(settings.STORAGE_ROOT))


async def delete_quietly(store: ObjectStore, path: Optional[str]) -> bool:
    """Best-effort delete: failures are logged with the path and swallowed."""
    if not path:
        return True
    try:
        await store.delete(path)
        return True
    except Exception:  # noqa: BLE001
        logger.exception("Failed to delete object %s; left for cleanup", path)
        return False


__all__ = [
    "ContentPathStrategy",
    "ObjectStore",
    "LocalObjectStore",
    "HttpObjectStore",
    "build_object_store",
    "delete_quietly",
]
