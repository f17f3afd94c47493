"""
blobs.py - Blob storage for record files.

Files live under "{collection}/{recordId}/{filename}" in either a local
directory or an S3 bucket. Both stores expose the same async surface;
the S3 client is synchronous so its calls run on a worker thread.
"""

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from pocketlite.config import PRESIGNED_URL_TTL_SECONDS
from pocketlite.errors import BlobStoreError, NotFoundError

logger = logging.getLogger("pocketlite.blobs")


def guess_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


class BlobStore(ABC):
    """Abstract blob store."""

    @abstractmethod
    async def put(self, path: str, content: bytes, content_type: str | None = None) -> None:
        ...

    @abstractmethod
    async def get(self, path: str) -> tuple[bytes, str]:
        """
        Read a blob.

        Returns:
            (content, content_type)

        Raises:
            NotFoundError: If nothing is stored at the path
        """
        ...

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete a blob; returns whether it existed."""
        ...

    async def presigned_url(self, path: str, ttl: int = PRESIGNED_URL_TTL_SECONDS) -> str | None:
        """Direct download URL, or None when the store cannot issue one."""
        return None

    async def _run_in_executor(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)


class LocalBlobStore(BlobStore):
    """Blob store rooted at a local directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise BlobStoreError("Path escapes the upload directory", path=path)
        return target

    async def put(self, path: str, content: bytes, content_type: str | None = None) -> None:
        target = self._resolve(path)
        await self._run_in_executor(self._write, target, content)
        logger.debug(f"Stored {len(content)} bytes at {path}")

    @staticmethod
    def _write(target: Path, content: bytes) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            raise BlobStoreError(f"Failed to write file: {e}", path=str(target)) from e

    async def get(self, path: str) -> tuple[bytes, str]:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError(f"File not found: {path}")
        content = await self._run_in_executor(target.read_bytes)
        return content, guess_content_type(path)

    async def delete(self, path: str) -> bool:
        target = self._resolve(path)
        if not target.is_file():
            return False
        await self._run_in_executor(target.unlink)
        return True


class S3BlobStore(BlobStore):
    """Blob store backed by an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        prefix: str = "",
        client: Any = None,
    ):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        if client is None:
            session = boto3.Session(region_name=region)
            client = session.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                config=BotoConfig(retries={"max_attempts": 5, "mode": "standard"}),
            )
        self._s3 = client

    def _key(self, path: str) -> str:
        return f"{self.prefix}/{path}" if self.prefix else path

    @staticmethod
    def _is_not_found(err: Exception) -> bool:
        if isinstance(err, ClientError):
            code = err.response.get("Error", {}).get("Code", "")
            return code in {"NoSuchKey", "404", "NotFound"}
        return False

    async def put(self, path: str, content: bytes, content_type: str | None = None) -> None:
        await self._run_in_executor(self._put, path, content, content_type or guess_content_type(path))

    def _put(self, path: str, content: bytes, content_type: str) -> None:
        try:
            self._s3.put_object(
                Bucket=self.bucket, Key=self._key(path), Body=content, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"S3 upload failed: {e}", path=path) from e

    async def get(self, path: str) -> tuple[bytes, str]:
        return await self._run_in_executor(self._get, path)

    def _get(self, path: str) -> tuple[bytes, str]:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=self._key(path))
        except ClientError as e:
            if self._is_not_found(e):
                raise NotFoundError(f"File not found: {path}") from e
            raise BlobStoreError(f"S3 download failed: {e}", path=path) from e
        except BotoCoreError as e:
            raise BlobStoreError(f"S3 download failed: {e}", path=path) from e
        return resp["Body"].read(), resp.get("ContentType") or guess_content_type(path)

    async def delete(self, path: str) -> bool:
        return await self._run_in_executor(self._delete, path)

    def _delete(self, path: str) -> bool:
        key = self._key(path)
        try:
            self._s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._is_not_found(e):
                return False
            raise BlobStoreError(f"S3 delete failed: {e}", path=path) from e
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"S3 delete failed: {e}", path=path) from e
        return True

    async def presigned_url(self, path: str, ttl: int = PRESIGNED_URL_TTL_SECONDS) -> str | None:
        try:
            return await self._run_in_executor(
                lambda: self._s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self.bucket, "Key": self._key(path)},
                    ExpiresIn=ttl,
                )
            )
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Failed to presign URL: {e}", path=path) from e


def create_blob_store(
    upload_dir: str,
    s3_bucket: str | None = None,
    s3_region: str | None = None,
    s3_endpoint_url: str | None = None,
) -> BlobStore:
    """S3 when a bucket is configured, the local directory otherwise."""
    if s3_bucket:
        logger.info(f"Using S3 blob store (bucket={s3_bucket})")
        return S3BlobStore(s3_bucket, region=s3_region, endpoint_url=s3_endpoint_url)
    logger.info(f"Using local blob store at {upload_dir}")
    return LocalBlobStore(upload_dir)
