from __future__ import annotations

import asyncio
import logging
import mimetypes
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import unquote, urlparse

import httpx

from ad_shipper import google_clients
from ad_shipper.config import settings
from ad_shipper.services.asset_links import (
    AssetValidationError,
    DriveVideoFile,
    LinkType,
    classify_link,
    download_url_for,
    drive_file_from_api,
    extract_drive_folder_id,
    has_video_extension,
    job_key_for,
    select_formats,
)
from ad_shipper.services.media_storage import MediaStorage

logger = logging.getLogger(__name__)

_CONTENT_DISPOSITION_FILENAME = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE)


@dataclass(frozen=True)
class StagedVideo:
    path: str
    ratio: Optional[str]
    content_type: str
    source_name: str
    duration_seconds: Optional[float] = None


@dataclass(frozen=True)
class ResolvedAssets:
    link_type: LinkType
    primary: StagedVideo
    secondary: Optional[StagedVideo] = None


def _filename_from_response(response: httpx.Response, url: str) -> str:
    disposition = response.headers.get("content-disposition") or ""
    match = _CONTENT_DISPOSITION_FILENAME.search(disposition)
    if match:
        return unquote(match.group(1).strip())
    tail = urlparse(url).path.rsplit("/", 1)[-1]
    return unquote(tail) or "video.mp4"


class AssetResolver:
    """
    Turns a row's asset link into staged video files.

    Every file is uploaded to object storage before anything else reads it, so later
    stages (analysis, Meta upload) only ever address staged paths.
    """

    def __init__(
        self,
        storage: MediaStorage,
        *,
        list_folder: Optional[Callable[[str], list[dict[str, Any]]]] = None,
        download_drive_file: Optional[Callable[..., tuple[bytes, Optional[str], Optional[str]]]] = None,
        download_timeout_seconds: float = 120.0,
        max_bytes: int = 500 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.storage = storage
        self._list_folder = list_folder or google_clients.list_folder_files
        self._download_drive_file = download_drive_file or google_clients.download_file
        self.download_timeout_seconds = download_timeout_seconds
        self.max_bytes = max_bytes
        self._transport = transport

    @classmethod
    def from_settings(cls, storage: MediaStorage) -> "AssetResolver":
        return cls(
            storage,
            download_timeout_seconds=settings.ASSET_DOWNLOAD_TIMEOUT_SECONDS,
            max_bytes=settings.ASSET_DOWNLOAD_MAX_BYTES,
        )

    async def resolve(self, row_id: str, asset_link: str) -> ResolvedAssets:
        link_type = classify_link(asset_link)
        logger.info(
            "asset_resolver.resolve",
            extra={"row_id": row_id, "link_type": link_type.value},
        )
        if link_type == LinkType.drive_folder:
            return await self._resolve_folder(row_id, asset_link)
        return await self._resolve_single(row_id, asset_link, link_type)

    async def _resolve_folder(self, row_id: str, asset_link: str) -> ResolvedAssets:
        folder_id = extract_drive_folder_id(asset_link)
        items = await asyncio.to_thread(self._list_folder, folder_id)
        files = [drive_file_from_api(item) for item in items]
        primary_file, secondary_file = select_formats(files)
        logger.info(
            "asset_resolver.formats_selected",
            extra={
                "row_id": row_id,
                "primary": primary_file.name,
                "primary_ratio": primary_file.ratio,
                "secondary": secondary_file.name if secondary_file else None,
            },
        )
        primary = await self._stage_drive_file(row_id, primary_file)
        secondary = await self._stage_drive_file(row_id, secondary_file) if secondary_file else None
        return ResolvedAssets(link_type=LinkType.drive_folder, primary=primary, secondary=secondary)

    async def _stage_drive_file(self, row_id: str, file: DriveVideoFile) -> StagedVideo:
        data, mime_type, _ = await asyncio.to_thread(self._download_drive_file, file.id, max_bytes=self.max_bytes)
        content_type = mime_type or file.mime_type or "video/mp4"
        return await self._stage(
            row_id=row_id,
            ratio=file.ratio,
            filename=file.name,
            data=data,
            content_type=content_type,
            metadata={"drive_file_id": file.id, "source_name": file.name, "aspect_ratio": file.ratio or "unknown"},
            duration_seconds=file.duration_seconds,
        )

    async def _resolve_single(self, row_id: str, asset_link: str, link_type: LinkType) -> ResolvedAssets:
        url = download_url_for(asset_link, link_type)
        data, content_type, filename = await self._download(url)
        base_type = content_type.split(";", 1)[0].strip().lower()
        if not base_type.startswith("video/"):
            if base_type in ("", "application/octet-stream", "binary/octet-stream") and has_video_extension(filename):
                base_type = mimetypes.guess_type(filename)[0] or "video/mp4"
            else:
                raise AssetValidationError(
                    f"Asset link did not return a video (content-type {content_type or 'missing'}): {asset_link}"
                )
        # A single file carries no dimensions; it is treated as the feed (4:5) cut.
        primary = await self._stage(
            row_id=row_id,
            ratio="4:5",
            filename=filename,
            data=data,
            content_type=base_type,
            metadata={"source_url": asset_link, "source_name": filename},
        )
        return ResolvedAssets(link_type=link_type, primary=primary)

    async def _download(self, url: str) -> tuple[bytes, str, str]:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.download_timeout_seconds,
            transport=self._transport,
        ) as client:
            async with client.stream("GET", url) as resp:
                resp.raise_for_status()
                chunks: list[bytes] = []
                total = 0
                async for chunk in resp.aiter_bytes(65536):
                    if not chunk:
                        continue
                    total += len(chunk)
                    if total > self.max_bytes:
                        raise AssetValidationError(f"media_too_large: {total} bytes (limit {self.max_bytes})")
                    chunks.append(chunk)
                content_type = resp.headers.get("content-type") or ""
                filename = _filename_from_response(resp, url)
        return b"".join(chunks), content_type, filename

    async def _stage(
        self,
        *,
        row_id: str,
        ratio: Optional[str],
        filename: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
        duration_seconds: Optional[float] = None,
    ) -> StagedVideo:
        key = self.storage.build_staging_key(job_key=job_key_for(row_id, ratio), filename=filename)
        path = await self.storage.upload(data, key, content_type, metadata)
        logger.info("asset_resolver.staged", extra={"row_id": row_id, "path": path, "ratio": ratio})
        return StagedVideo(
            path=path,
            ratio=ratio,
            content_type=content_type,
            source_name=filename,
            duration_seconds=duration_seconds,
        )
