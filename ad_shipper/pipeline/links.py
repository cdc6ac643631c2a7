from __future__ import annotations

from typing import Optional


def build_landing_url(raw: Optional[str], default: str) -> str:
    url = (raw or "").strip() or default.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


def append_utm(url: str, utm_params: str) -> str:
    params = utm_params.strip().lstrip("?&")
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{params}"


def primary_text_with_link(primary_text: str, landing_url: str) -> str:
    return f"{primary_text}\n\n{landing_url}"
