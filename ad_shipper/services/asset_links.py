from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".webm", ".mkv", ".mpeg", ".3gp", ".m4v"}
RATIO_TOLERANCE = 0.05
_KNOWN_RATIOS = (
    ("4:5", 4 / 5),
    ("9:16", 9 / 16),
    ("1:1", 1.0),
    ("16:9", 16 / 9),
)

_DRIVE_FILE_ID_PATTERNS = (
    re.compile(r"/file/d/([A-Za-z0-9_-]+)"),
    re.compile(r"/document/d/([A-Za-z0-9_-]+)"),
    re.compile(r"[?&]id=([A-Za-z0-9_-]+)"),
)
_DRIVE_FOLDER_ID_PATTERN = re.compile(r"/folders/([A-Za-z0-9_-]+)")


class AssetValidationError(RuntimeError):
    pass


class LinkType(str, Enum):
    drive_folder = "drive_folder"
    drive_file = "drive_file"
    dropbox = "dropbox"
    direct = "direct"


@dataclass(frozen=True)
class DriveVideoFile:
    id: str
    name: str
    mime_type: str
    width: Optional[int] = None
    height: Optional[int] = None
    ratio: Optional[str] = None
    duration_seconds: Optional[float] = None


def classify_link(url: str) -> LinkType:
    """Classify an asset link by URL structure alone."""
    if not isinstance(url, str) or not url.strip():
        raise AssetValidationError("Asset link is empty.")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise AssetValidationError(f"Unsupported asset link (expected an http(s) URL): {url}")
    if "drive.google.com/drive/folders/" in url:
        return LinkType.drive_folder
    if "drive.google.com" in url or "docs.google.com" in url:
        return LinkType.drive_file
    if "dropbox.com" in url or "dl.dropboxusercontent.com" in url:
        return LinkType.dropbox
    return LinkType.direct


def extract_drive_folder_id(url: str) -> str:
    match = _DRIVE_FOLDER_ID_PATTERN.search(url)
    if not match:
        raise AssetValidationError(f"Cannot extract folder ID from Google Drive URL: {url}")
    return match.group(1)


def extract_drive_file_id(url: str) -> str:
    for pattern in _DRIVE_FILE_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    raise AssetValidationError(f"Cannot extract file ID from Google Drive URL: {url}")


def drive_download_url(url: str) -> str:
    return f"https://drive.google.com/uc?export=download&id={extract_drive_file_id(url)}"


def dropbox_download_url(url: str) -> str:
    direct = url.replace("www.dropbox.com", "dl.dropboxusercontent.com")
    if "dl=0" in direct:
        return direct.replace("dl=0", "dl=1")
    if "dl=1" not in direct:
        direct += ("&" if "?" in direct else "?") + "dl=1"
    return direct


def download_url_for(url: str, link_type: LinkType) -> str:
    if link_type == LinkType.drive_file:
        return drive_download_url(url)
    if link_type == LinkType.dropbox:
        return dropbox_download_url(url)
    if link_type == LinkType.direct:
        return url
    raise AssetValidationError(f"Folder links have no single download URL: {url}")


def aspect_ratio_bucket(width: Optional[int], height: Optional[int]) -> Optional[str]:
    if not width or not height:
        return None
    ratio = width / height
    for label, target in _KNOWN_RATIOS:
        if abs(ratio - target) < RATIO_TOLERANCE:
            return label
    return f"{width}:{height}"


def has_video_extension(name: str) -> bool:
    dot = (name or "").rfind(".")
    return dot != -1 and name[dot:].lower() in VIDEO_EXTENSIONS


def is_video_file(mime_type: Optional[str], name: str) -> bool:
    if (mime_type or "").startswith("video/"):
        return True
    return has_video_extension(name)


def drive_file_from_api(item: dict[str, Any]) -> DriveVideoFile:
    media = item.get("videoMediaMetadata") or item.get("imageMediaMetadata") or {}
    width = media.get("width")
    height = media.get("height")
    duration_millis = (item.get("videoMediaMetadata") or {}).get("durationMillis")
    return DriveVideoFile(
        id=str(item.get("id")),
        name=str(item.get("name") or ""),
        mime_type=str(item.get("mimeType") or ""),
        width=int(width) if width else None,
        height=int(height) if height else None,
        ratio=aspect_ratio_bucket(width, height),
        duration_seconds=int(duration_millis) / 1000 if duration_millis else None,
    )


def select_formats(files: list[DriveVideoFile]) -> tuple[DriveVideoFile, Optional[DriveVideoFile]]:
    """
    Pick (primary, secondary) from a folder listing.

    Primary is the first 4:5 video, else the first 9:16. Secondary is the 9:16 video
    only when the primary is 4:5.
    """
    videos = [item for item in files if is_video_file(item.mime_type, item.name)]
    if not videos:
        raise AssetValidationError(f"No video files found in Drive folder. Found {len(files)} non-video files.")

    portrait = next((item for item in videos if item.ratio == "4:5"), None)
    vertical = next((item for item in videos if item.ratio == "9:16"), None)
    primary = portrait or vertical
    if primary is None:
        available = ", ".join(f"{item.name} ({item.ratio or 'unknown'})" for item in videos)
        raise AssetValidationError(f"No video with recognized aspect ratio found. Available: {available}")
    secondary = vertical if portrait is not None else None
    return primary, secondary


def ratio_slug(ratio: Optional[str]) -> str:
    return (ratio or "4:5").replace(":", "x")


def job_key_for(row_id: str, ratio: Optional[str]) -> str:
    return f"{row_id}_{ratio_slug(ratio)}"
