"""
Write-once blob storage for evidence screenshots.

Screenshots are dispute evidence, so every backend refuses to overwrite an
existing object. Errors are not caught here; a failed upload fails the attempt.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    """Stores blobs under a key and returns a locator string."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> str:
        """
        Store data under key.

        Args:
            key: Object key (slash separated)
            data: Blob bytes
            content_type: MIME type of the data

        Returns:
            Locator for the stored blob (e.g., gs://bucket/key)

        Raises:
            FileExistsError: If an object already exists under key (local)
        """
        pass

    @abstractmethod
    def get(self, ref: str) -> bytes:
        """Read back a blob by the locator returned from put."""
        pass


class LocalBlobStorage(BlobStorage):
    """Filesystem-backed storage for local development and tests."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root):
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # "xb" refuses to overwrite
        with open(path, "xb") as f:
            f.write(data)
        return path.as_uri()

    def get(self, ref: str) -> bytes:
        if not ref.startswith("file://"):
            raise ValueError(f"Not a local blob ref: {ref}")
        return Path(ref.removeprefix("file://")).read_bytes()


class GCSBlobStorage(BlobStorage):
    """Google Cloud Storage backend."""

    def __init__(self, bucket_name: str, client=None):
        from google.cloud import storage

        self.bucket_name = bucket_name
        self._client = client or storage.Client()
        self._bucket = self._client.bucket(bucket_name)

    def put(self, key: str, data: bytes, content_type: str) -> str:
        blob = self._bucket.blob(key)
        # if_generation_match=0 only succeeds when the object does not exist
        blob.upload_from_string(data, content_type=content_type, if_generation_match=0)
        return f"gs://{self.bucket_name}/{key}"

    def get(self, ref: str) -> bytes:
        prefix = f"gs://{self.bucket_name}/"
        if not ref.startswith(prefix):
            raise ValueError(f"Blob ref not in bucket {self.bucket_name}: {ref}")
        return self._bucket.blob(ref.removeprefix(prefix)).download_as_bytes()


def build_blob_storage() -> BlobStorage:
    """
    Build blob storage from the environment.

    Uses SCREENSHOT_BUCKET (GCS) when set, otherwise SCREENSHOT_DIR
    (default ./screenshots) on the local filesystem.
    """
    bucket = os.getenv("SCREENSHOT_BUCKET")
    if bucket:
        logger.info("Screenshot storage: gs://%s", bucket)
        return GCSBlobStorage(bucket)

    root = os.getenv("SCREENSHOT_DIR", "./screenshots")
    logger.info("Screenshot storage: local directory %s", root)
    return LocalBlobStorage(root)
