"""
Object storage for chapter videos
Objects live under ``<root>/<bucket>/<path>``; reads go through signed URLs.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, List, Optional

from config import settings
from utils.jwt_utils import JWTManager, jwt_manager
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("backends.storage")

CHUNK_SIZE = 1024 * 1024


class StorageError(Exception):
    def __init__(self, message: str, code: str = "unavailable"):
        super().__init__(message)
        self.message = message
        self.code = code


class SignedUrl:
    def __init__(self, url: str, expires_at: datetime):
        self.url = url
        self.expires_at = expires_at


class LocalObjectStorage:
    def __init__(
        self,
        root: str,
        bucket: str,
        tokens: JWTManager = jwt_manager,
        public_prefix: str = "/media",
    ):
        self.root = Path(root)
        self.bucket = bucket
        self.tokens = tokens
        self.public_prefix = public_prefix.rstrip("/")

    def _resolve(self, path: str) -> Path:
        bucket_dir = (self.root / self.bucket).resolve()
        target = (bucket_dir / path).resolve()
        if bucket_dir not in target.parents:
            raise StorageError(f"Invalid object path: {path}", "invalid_path")
        return target

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def open(self, path: str) -> Path:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError("Object not found", "not_found")
        return target

    def upload(
        self,
        path: str,
        stream: BinaryIO,
        allow_overwrite: bool = False,
        size: Optional[int] = None,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> str:
        """
        Copy ``stream`` into the bucket at ``path``.

        The object only becomes visible once every byte has been written, so a
        failed upload never leaves a partial object behind.
        """
        target = self._resolve(path)
        if target.exists() and not allow_overwrite:
            raise StorageError("The resource already exists", "already_exists")

        partial = target.with_name(target.name + ".part")
        written = 0
        last_percent = -1
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(partial, "wb") as out:
                for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
                    out.write(chunk)
                    written += len(chunk)
                    if on_progress and size:
                        percent = min(100, round(written * 100 / size))
                        if percent != last_percent:
                            on_progress(percent)
                            last_percent = percent
            os.replace(partial, target)
        except OSError as e:
            if partial.exists():
                partial.unlink()
            logger.error(f"Upload failed for {path}", category=LogCategory.STORAGE, exception=e)
            raise StorageError(f"Upload failed: {e.strerror or e}") from e

        if on_progress and last_percent != 100:
            on_progress(100)

        logger.info(
            "Object uploaded", category=LogCategory.STORAGE, extra={"bucket": self.bucket, "path": path, "bytes": written}
        )
        return path

    def remove(self, paths: Iterable[str]) -> List[str]:
        removed = []
        for path in paths:
            target = self._resolve(path)
            try:
                target.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageError(f"Could not remove {path}: {e.strerror or e}") from e
            removed.append(path)
        return removed

    def create_signed_url(self, path: str, expires_in: int) -> SignedUrl:
        if not self.exists(path):
            raise StorageError("Object not found", "not_found")
        issued = self.tokens.create_media_token(self.bucket, path, expires_in)
        url = f"{self.public_prefix}/{self.bucket}/{path}?token={issued['token']}"
        return SignedUrl(url=url, expires_at=issued["expires_at"])

    def verify_signed_access(self, bucket: str, path: str, token: str) -> bool:
        return bucket == self.bucket and self.tokens.verify_media_token(token, bucket, path)


_storage: Optional[LocalObjectStorage] = None


def get_object_storage() -> LocalObjectStorage:
    """FastAPI dependency returning the configured bucket"""
    global _storage
    if _storage is None:
        _storage = LocalObjectStorage(settings.STORAGE_ROOT, settings.STORAGE_BUCKET)
    return _storage
