from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict, Tuple

_PROMPT_CACHE: Dict[str, Tuple[str, str]] = {}
_PROMPTS_ROOT = Path(__file__).resolve().parents[1] / "prompts"


def load_prompt(group: str, name: str) -> Tuple[str, str]:
    """
    Load a prompt template from `prompts/<group>/<name>.md` and compute its SHA256.
    """
    cache_key = f"{group}/{name}"
    if cache_key in _PROMPT_CACHE:
        return _PROMPT_CACHE[cache_key]

    prompt_path = _PROMPTS_ROOT / group / f"{name}.md"
    text = prompt_path.read_text(encoding="utf-8")
    sha = hashlib.sha256(text.encode("utf-8")).hexdigest()
    _PROMPT_CACHE[cache_key] = (text, sha)
    return text, sha
