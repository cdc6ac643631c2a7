from __future__ import annotations

import io
import json
import os
from pathlib import Path
from typing import Any, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload
from google.auth.transport.requests import Request
from google.oauth2 import credentials as oauth2_credentials
from google.oauth2.service_account import Credentials as ServiceAccountCredentials
import google.auth

SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
]

_FOLDER_FILE_FIELDS = "nextPageToken, files(id,name,mimeType,size,createdTime,videoMediaMetadata,imageMediaMetadata)"


class DriveAccessError(RuntimeError):
    pass


def _load_service_account_from_file(path: Path) -> Optional[ServiceAccountCredentials]:
    if not path.exists():
        return None
    info = json.loads(path.read_text(encoding="utf-8"))
    if "client_email" in info and "private_key" in info:
        return ServiceAccountCredentials.from_service_account_info(info, scopes=SCOPES)
    return None


def _load_service_account_from_env() -> Optional[ServiceAccountCredentials]:
    raw_json = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON")
    if raw_json:
        info = json.loads(raw_json)
        return ServiceAccountCredentials.from_service_account_info(info, scopes=SCOPES)
    email = os.getenv("GOOGLE_CLIENT_EMAIL")
    key = os.getenv("GOOGLE_PRIVATE_KEY")
    if email and key:
        info = {
            "client_email": email,
            "private_key": key.replace("\\n", "\n"),
            "token_uri": "https://oauth2.googleapis.com/token",
        }
        return ServiceAccountCredentials.from_service_account_info(info, scopes=SCOPES)
    return None


def _load_oauth_credentials() -> Optional[oauth2_credentials.Credentials]:
    client_id = os.getenv("GOOGLE_CLIENT_ID")
    client_secret = os.getenv("GOOGLE_CLIENT_SECRET")
    refresh_token = os.getenv("GOOGLE_REFRESH_TOKEN")
    if client_id and client_secret and refresh_token:
        creds = oauth2_credentials.Credentials(
            token=None,
            refresh_token=refresh_token,
            client_id=client_id,
            client_secret=client_secret,
            token_uri="https://oauth2.googleapis.com/token",
            scopes=SCOPES,
        )
        creds.refresh(Request())
        return creds
    return None


def get_google_credentials():
    key_file = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if key_file:
        creds = _load_service_account_from_file(Path(key_file))
        if creds:
            return creds

    creds = _load_service_account_from_env()
    if creds:
        return creds

    creds = _load_oauth_credentials()
    if creds:
        return creds

    try:
        creds, _ = google.auth.default(scopes=SCOPES)
        return creds
    except Exception as exc:
        raise DriveAccessError(
            "Google auth not configured. Set GOOGLE_APPLICATION_CREDENTIALS, GOOGLE_SERVICE_ACCOUNT_JSON, "
            "service account envs (GOOGLE_CLIENT_EMAIL/GOOGLE_PRIVATE_KEY) or OAuth envs "
            "(GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET/GOOGLE_REFRESH_TOKEN)."
        ) from exc


def get_drive_client():
    creds = get_google_credentials()
    return build("drive", "v3", credentials=creds, cache_discovery=False)


def list_folder_files(folder_id: str, *, drive: Any = None) -> list[dict[str, Any]]:
    """All non-trashed files directly inside a Drive folder, newest first."""
    drive = drive or get_drive_client()
    files: list[dict[str, Any]] = []
    page_token: Optional[str] = None
    while True:
        try:
            response = (
                drive.files()
                .list(
                    q=f"'{folder_id}' in parents and trashed = false",
                    fields=_FOLDER_FILE_FIELDS,
                    orderBy="createdTime desc",
                    pageSize=100,
                    pageToken=page_token,
                    supportsAllDrives=True,
                    includeItemsFromAllDrives=True,
                )
                .execute()
            )
        except HttpError as exc:
            raise DriveAccessError(f"Failed to list Drive folder {folder_id}: {exc}") from exc
        files.extend(response.get("files") or [])
        page_token = response.get("nextPageToken")
        if not page_token:
            return files


def download_file(file_id: str, *, max_bytes: int, drive: Any = None) -> tuple[bytes, Optional[str], Optional[str]]:
    """Download a Drive file's content. Returns (data, mime_type, name)."""
    drive = drive or get_drive_client()
    try:
        meta = drive.files().get(fileId=file_id, fields="id,name,mimeType,size", supportsAllDrives=True).execute()
        size = int(meta.get("size") or 0)
        if size and size > max_bytes:
            raise DriveAccessError(f"Drive file {file_id} is too large ({size} bytes, limit {max_bytes}).")
        buffer = io.BytesIO()
        downloader = MediaIoBaseDownload(buffer, drive.files().get_media(fileId=file_id, supportsAllDrives=True))
        done = False
        while not done:
            _, done = downloader.next_chunk()
            if buffer.tell() > max_bytes:
                raise DriveAccessError(f"Drive file {file_id} exceeded {max_bytes} bytes while downloading.")
    except HttpError as exc:
        raise DriveAccessError(f"Failed to download Drive file {file_id}: {exc}") from exc
    return buffer.getvalue(), meta.get("mimeType"), meta.get("name")
