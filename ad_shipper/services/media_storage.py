from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Optional

import boto3
from botocore.config import Config

from ad_shipper.config import settings

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class MediaStorageConfigurationError(RuntimeError):
    pass


def safe_filename(name: str, *, default: str = "video.mp4") -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", (name or "").strip()).strip("._")
    return cleaned or default


class MediaStorage:
    """
    Thin wrapper around S3-compatible storage used to stage source videos.

    Paths returned by `upload` are object keys inside the configured bucket; every later
    consumer (analysis, presigned URLs for Meta) addresses the staged file by that path.
    """

    def __init__(
        self,
        *,
        bucket: str,
        endpoint: Optional[str],
        access_key: Optional[str],
        secret_key: Optional[str],
        region: str = "us-east-1",
        prefix: str = "",
        presign_ttl: int = 3600,
        use_ssl: bool = True,
        force_path_style: bool = True,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise MediaStorageConfigurationError("MEDIA_STORAGE_BUCKET is required")
        self.bucket = bucket
        self.prefix = (prefix or "").strip("/")
        self.presign_ttl = int(presign_ttl or 3600)

        if client is not None:
            self.client = client
            return
        if not access_key or not secret_key:
            raise MediaStorageConfigurationError(
                "MEDIA_STORAGE_ACCESS_KEY and MEDIA_STORAGE_SECRET_KEY are required"
            )
        addressing_style = "path" if force_path_style else "auto"
        session = boto3.session.Session()
        self.client = session.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region or "us-east-1",
            use_ssl=bool(use_ssl),
            config=Config(
                s3={"addressing_style": addressing_style},
                signature_version="s3v4",
            ),
        )

    @classmethod
    def from_settings(cls) -> "MediaStorage":
        return cls(
            bucket=settings.MEDIA_STORAGE_BUCKET or "",
            endpoint=settings.MEDIA_STORAGE_ENDPOINT,
            access_key=settings.MEDIA_STORAGE_ACCESS_KEY,
            secret_key=settings.MEDIA_STORAGE_SECRET_KEY,
            region=settings.MEDIA_STORAGE_REGION,
            prefix=settings.MEDIA_STORAGE_PREFIX,
            presign_ttl=settings.MEDIA_STORAGE_PRESIGN_TTL_SECONDS,
            use_ssl=settings.MEDIA_STORAGE_USE_SSL,
            force_path_style=settings.MEDIA_STORAGE_FORCE_PATH_STYLE,
        )

    def build_staging_key(self, *, job_key: str, filename: str) -> str:
        """
        Staging keys: <prefix>/batch-ship/<job_key>/<filename>
        """
        parts = [p for p in [self.prefix, "batch-ship", job_key] if p]
        return "/".join(parts + [safe_filename(filename)])

    def upload_bytes(
        self,
        *,
        key: str,
        data: bytes,
        content_type: Optional[str],
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        if metadata:
            kwargs["Metadata"] = {k: str(v) for k, v in metadata.items() if v is not None}
        self.client.put_object(**kwargs)
        logger.info("media_storage.uploaded", extra={"key": key, "bytes": len(data)})
        return key

    def presign_url(self, key: str, *, expires_in: Optional[int] = None) -> str:
        ttl = int(expires_in or self.presign_ttl or 3600)
        return self.client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl,
        )

    def download_bytes(self, key: str) -> tuple[bytes, Optional[str]]:
        obj = self.client.get_object(Bucket=self.bucket, Key=key)
        body = obj.get("Body")
        content_type = obj.get("ContentType")
        data = body.read() if body else b""
        return data, content_type

    # boto3 is synchronous; the pipeline awaits these.

    async def upload(
        self,
        data: bytes,
        key: str,
        content_type: Optional[str],
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        return await asyncio.to_thread(
            self.upload_bytes, key=key, data=data, content_type=content_type, metadata=metadata
        )

    async def presign_get(self, path: str, ttl: Optional[int] = None) -> str:
        return await asyncio.to_thread(self.presign_url, path, expires_in=ttl)

    async def read(self, path: str) -> bytes:
        data, _ = await asyncio.to_thread(self.download_bytes, path)
        return data
