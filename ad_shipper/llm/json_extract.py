from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Optional, Sequence

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


class MalformedResponseError(RuntimeError):
    def __init__(self, message: str, *, raw_text: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


def strip_code_fences(text: str) -> str:
    raw = text.strip()
    match = _FENCE_RE.search(raw)
    if match:
        return match.group(1).strip()
    return raw


def _iter_top_level_objects(text: str) -> Iterable[str]:
    """Yield every balanced top-level `{...}` span, honouring string literals."""
    start: int | None = None
    depth = 0
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if start is None:
            if ch == "{":
                start = i
                depth = 1
                in_string = False
                escape = False
            continue

        if in_string:
            if escape:
                escape = False
                continue
            if ch == "\\":
                escape = True
                continue
            if ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]
                start = None


def _largest_object(text: str) -> Optional[str]:
    spans = list(_iter_top_level_objects(text))
    if spans:
        return max(spans, key=len)
    # Unbalanced output (e.g. truncated or stray braces): fall back to first `{` .. last `}`.
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        return text[first : last + 1]
    return None


def _escape_bare_newlines(text: str) -> str:
    out: list[str] = []
    in_string = False
    escape = False
    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            elif ch == "\n":
                out.append("\\n")
                continue
            elif ch == "\r":
                out.append("\\r")
                continue
            elif ch == "\t":
                out.append("\\t")
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def _repair(text: str) -> str:
    return _escape_bare_newlines(_TRAILING_COMMA_RE.sub(r"\1", text))


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _regex_string_field(text: str, field: str) -> Optional[str]:
    match = re.search(rf'"{re.escape(field)}"\s*:\s*"((?:[^"\\]|\\.)*)"', text, re.DOTALL)
    if not match:
        return None
    value = match.group(1)
    try:
        return json.loads(f'"{_escape_bare_newlines(value)}"')
    except ValueError:
        return value.replace('\\"', '"').replace("\\n", "\n")


def _regex_list_field(text: str, field: str) -> Optional[list[Any]]:
    match = re.search(rf'"{re.escape(field)}"\s*:\s*(\[.*?\])', text, re.DOTALL)
    if not match:
        return None
    try:
        parsed = json.loads(_repair(match.group(1)))
    except ValueError:
        return None
    return parsed if isinstance(parsed, list) else None


def extract_json(
    text: str,
    *,
    required_fields: Sequence[str] = (),
    optional_fields: Sequence[str] = (),
    list_fields: Sequence[str] = (),
) -> dict[str, Any]:
    """
    Parse an LLM reply into a JSON object, tolerating the usual ways models break JSON.

    Tried in order: the raw reply, a fenced block or the largest `{...}` span, the same
    candidates after removing trailing commas and escaping raw newlines inside strings,
    and finally per-field regex extraction of `required_fields` (plus any optional
    string fields and list fields that can be found). Raises MalformedResponseError
    when nothing yields an object containing every required field.
    """
    if not isinstance(text, str) or not text.strip():
        raise MalformedResponseError("LLM response was empty", raw_text=text if isinstance(text, str) else None)
    raw = text.strip()

    def _complete(candidate: Optional[dict[str, Any]]) -> bool:
        return candidate is not None and all(field in candidate for field in required_fields)

    direct = _loads_object(raw)
    if _complete(direct):
        return direct  # type: ignore[return-value]

    candidates: list[str] = []
    for match in _FENCE_RE.finditer(raw):
        candidates.append(match.group(1).strip())
    largest = _largest_object(raw)
    if largest:
        candidates.append(largest)

    for candidate in candidates:
        parsed = _loads_object(candidate)
        if _complete(parsed):
            return parsed  # type: ignore[return-value]

    for candidate in [*candidates, raw]:
        parsed = _loads_object(_repair(candidate))
        if _complete(parsed):
            logger.info("llm.json_extract.repaired", extra={"fields": list(required_fields)})
            return parsed  # type: ignore[return-value]

    if required_fields:
        extracted: dict[str, Any] = {}
        for field in required_fields:
            value = _regex_string_field(raw, field)
            if value is None:
                break
            extracted[field] = value
        else:
            for field in optional_fields:
                value = _regex_string_field(raw, field)
                if value is not None:
                    extracted[field] = value
            for field in list_fields:
                items = _regex_list_field(raw, field)
                extracted[field] = items if items is not None else []
            logger.warning("llm.json_extract.regex_fallback", extra={"fields": list(extracted.keys())})
            return extracted

    head = raw[:200].replace("\n", "\\n")
    raise MalformedResponseError(f"Could not extract a JSON object from LLM response: {head!r}", raw_text=raw)
