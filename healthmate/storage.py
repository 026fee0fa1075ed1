import logging
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from healthmate.config import Settings, get_settings
from healthmate.exceptions import StorageError

logger = logging.getLogger(__name__)

REPORTS_FOLDER = "healthmate/reports"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "application/pdf": ".pdf",
}


@dataclass(frozen=True)
class StoredFile:
    public_id: str
    url: str
    filename: str


class StorageProvider(Protocol):
    name: str

    def upload(self, content: bytes, original_name: str, content_type: str) -> StoredFile:
        ...

    def delete(self, public_id: str) -> None:
        ...


def _generate_public_id() -> str:
    # e.g. healthmate/reports/1718000000000_k3j9x2m1q8za
    timestamp = int(time.time() * 1000)
    return f"{REPORTS_FOLDER}/{timestamp}_{secrets.token_hex(6)}"


def _safe_suffix(original_name: str, content_type: str) -> str:
    suffix = Path(original_name or "").suffix.lower()
    if re.fullmatch(r"\.[a-z0-9]{1,5}", suffix or ""):
        return suffix
    return _EXTENSIONS.get(content_type, "")


class LocalStorage:
    """Stores files on disk and serves them from the app's `/uploads` mount."""
    name = "local"

    def __init__(self, root: str | Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path_for(self, public_id: str) -> Path:
        path = (self.root / public_id).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Refusing to touch a path outside the upload dir: {public_id}")
        return path

    def upload(self, content: bytes, original_name: str, content_type: str) -> StoredFile:
        public_id = _generate_public_id() + _safe_suffix(original_name, content_type)
        path = self._path_for(public_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Failed to store file: {e}") from e
        return StoredFile(public_id=public_id, url=f"{self.base_url}/uploads/{public_id}", filename=path.name)

    def delete(self, public_id: str) -> None:
        path = self._path_for(public_id)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.info("Stored file %s already gone", public_id)
        except OSError as e:
            raise StorageError(f"Failed to delete file {public_id}: {e}") from e


class GCSStorage:
    """Google Cloud Storage backend; objects are made public when the bucket allows it."""
    name = "gcs"

    def __init__(self, bucket_name: str | None):
        if not bucket_name:
            raise RuntimeError("GCS_BUCKET env var is required when using the gcs storage backend")
        self.bucket_name = bucket_name
        self._bucket = None

    def _get_bucket(self):
        if self._bucket is None:
            # Lazy import to avoid client setup when the local backend is used
            from google.cloud import storage

            self._bucket = storage.Client().bucket(self.bucket_name)
        return self._bucket

    def upload(self, content: bytes, original_name: str, content_type: str) -> StoredFile:
        public_id = _generate_public_id() + _safe_suffix(original_name, content_type)
        try:
            blob = self._get_bucket().blob(public_id)
            blob.upload_from_string(content, content_type=content_type)
        except Exception as e:
            raise StorageError(f"Failed to upload file to GCS: {e}") from e
        try:
            blob.make_public()
            url = blob.public_url
        except Exception:
            # Uniform bucket-level access rejects per-object ACLs; fall back to the plain object URL
            url = f"https://storage.googleapis.com/{self.bucket_name}/{public_id}"
        return StoredFile(public_id=public_id, url=url, filename=public_id.rsplit("/", 1)[-1])

    def delete(self, public_id: str) -> None:
        try:
            self._get_bucket().blob(public_id).delete()
        except Exception as e:
            raise StorageError(f"Failed to delete {public_id} from GCS: {e}") from e


def build_storage(settings: Settings | None = None) -> StorageProvider:
    settings = settings or get_settings()
    if settings.storage_backend == "local":
        os.makedirs(settings.upload_dir, exist_ok=True)
        return LocalStorage(settings.upload_dir, settings.public_base_url)
    if settings.storage_backend == "gcs":
        return GCSStorage(settings.gcs_bucket)
    raise ValueError(
        f"Unknown storage backend '{settings.storage_backend}'. Available backends: local, gcs."
    )
