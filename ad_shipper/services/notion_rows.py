from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ad_shipper.config import settings

logger = logging.getLogger(__name__)

NOTION_API_BASE_URL = "https://api.notion.com/v1"
# Notion rejects rich_text objects longer than 2000 characters.
_RICH_TEXT_CHUNK = 2000


class NotionApiError(RuntimeError):
    def __init__(self, *, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class WorkspaceRow:
    page_id: str
    deliverable_name: str
    asset_link: str
    angle: str
    format: str
    messenger: str
    media_type: str
    landing_page_url: str


def _plain_text(items: Any) -> str:
    if not isinstance(items, list):
        return ""
    return "".join(str(item.get("plain_text") or "") for item in items if isinstance(item, dict))


def _title(prop: Any) -> str:
    return _plain_text((prop or {}).get("title")) if isinstance(prop, dict) else ""


def _rich_text(prop: Any) -> str:
    return _plain_text((prop or {}).get("rich_text")) if isinstance(prop, dict) else ""


def _select(prop: Any) -> str:
    if not isinstance(prop, dict):
        return ""
    select = prop.get("select")
    if isinstance(select, dict):
        return str(select.get("name") or "")
    return ""


def _text_or_select(prop: Any) -> str:
    if not isinstance(prop, dict):
        return ""
    if prop.get("url"):
        return str(prop["url"])
    return _select(prop) or _rich_text(prop)


def row_from_page(page: dict[str, Any]) -> WorkspaceRow:
    props = page.get("properties") or {}
    return WorkspaceRow(
        page_id=str(page.get("id")),
        deliverable_name=_title(props.get("Deliverable Name") or props.get("Name")),
        asset_link=str((props.get("Asset Link") or {}).get("url") or ""),
        angle=_rich_text(props.get("Angle")) or _select(props.get("Angle")),
        format=_select(props.get("Format")),
        messenger=_select(props.get("Messenger")),
        media_type=(_select(props.get("Media Type")) or "video").lower(),
        landing_page_url=_text_or_select(props.get("Landing Page URL")),
    )


def _rich_text_value(content: str) -> list[dict[str, Any]]:
    chunks = [content[i : i + _RICH_TEXT_CHUNK] for i in range(0, len(content), _RICH_TEXT_CHUNK)] or [""]
    return [{"text": {"content": chunk}} for chunk in chunks]


class NotionRowsClient:
    """Reads candidate rows from the media database and writes generated copy back."""

    def __init__(
        self,
        *,
        api_key: str,
        database_id: str,
        api_version: str = "2022-06-28",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.database_id = database_id
        self.api_version = api_version
        self._timeout = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "NotionRowsClient":
        if not settings.NOTION_API_KEY:
            raise NotionApiError(message="NOTION_API_KEY not configured")
        if not settings.NOTION_MEDIA_DB_ID:
            raise NotionApiError(message="NOTION_MEDIA_DB_ID not configured")
        return cls(
            api_key=settings.NOTION_API_KEY,
            database_id=settings.NOTION_MEDIA_DB_ID,
            api_version=settings.NOTION_API_VERSION,
            timeout_seconds=settings.NOTION_TIMEOUT_SECONDS,
        )

    async def fetch_candidate_rows(self) -> list[WorkspaceRow]:
        """Rows with an asset link and no primary text yet, across all result pages."""
        body: dict[str, Any] = {
            "filter": {
                "and": [
                    {"property": "Asset Link", "url": {"is_not_empty": True}},
                    {"property": "Primary Text", "rich_text": {"is_empty": True}},
                ]
            },
            "page_size": 100,
        }
        rows: list[WorkspaceRow] = []
        while True:
            response = await self._send("POST", f"/databases/{self.database_id}/query", payload=body)
            rows.extend(row_from_page(page) for page in response.get("results") or [])
            cursor = response.get("next_cursor")
            if not response.get("has_more") or not cursor:
                break
            body = {**body, "start_cursor": cursor}
        logger.info("notion_rows.fetched", extra={"rows": len(rows)})
        return rows

    async def update_copy(self, page_id: str, *, primary_text: str, headline: str) -> None:
        payload = {
            "properties": {
                "Primary Text": {"rich_text": _rich_text_value(primary_text)},
                "Headline": {"rich_text": _rich_text_value(headline)},
            }
        }
        await self._send("PATCH", f"/pages/{page_id}", payload=payload)
        logger.info("notion_rows.updated", extra={"page_id": page_id})

    async def _send(self, method: str, path: str, *, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Notion-Version": self.api_version,
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, f"{NOTION_API_BASE_URL}{path}", json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise NotionApiError(message=f"Network error while calling Notion: {exc}") from exc

        if response.status_code >= 400:
            raise NotionApiError(
                message=f"Notion API call failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise NotionApiError(message="Notion API returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise NotionApiError(message="Notion API response must be a JSON object")
        return body
