"""
Blob storage for compiled snapshot text and rendered PDFs.

Two backends behind one interface:
  - LocalBlobStore: files under LOCAL_STORAGE_DIR (development, tests)
  - S3BlobStore: one bucket, boto3 calls pushed to a thread

Missing keys raise NotFound; every other failure is a StorageError so the
service gateway can retry it.
"""
import asyncio
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from groundwork.config import get_settings
from groundwork.exceptions import NotFound, StorageError
from groundwork.utils.logger import logger


class BlobStore:
    """put / get / delete by key. Keys are '/'-separated relative paths."""

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    async def get(self, key: str) -> bytes:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    def download_url(self, key: str) -> Optional[str]:
        """Direct download URL where the backend supports one."""
        return None


class LocalBlobStore(BlobStore):
    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so readers never see a partial object
            tmp = path.with_name(path.name + ".part")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.info("blob.put", extra={"storage_key": key})
        return key

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFound(f"Blob {key} not found")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e


class S3BlobStore(BlobStore):
    def __init__(self, bucket: str, region: str, access_key_id: str = "", secret_access_key: str = ""):
        self.bucket = bucket
        self.client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
        )

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.info("blob.put", extra={"storage_key": key})
        return key

    async def get(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self.client.get_object, Bucket=self.bucket, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404", "NotFound"):
                raise NotFound(f"Blob {key} not found") from e
            raise StorageError(f"Failed to read {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def download_url(self, key: str) -> Optional[str]:
        """Presigned GET URL (1-hour expiry)."""
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=3600,
        )


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    global _blob_store
    if _blob_store is None:
        settings = get_settings()
        if settings.storage_backend == "s3":
            _blob_store = S3BlobStore(
                settings.aws_s3_bucket,
                settings.aws_s3_region,
                settings.aws_access_key_id,
                settings.aws_secret_access_key,
            )
        else:
            _blob_store = LocalBlobStore(settings.local_storage_dir)
    return _blob_store
