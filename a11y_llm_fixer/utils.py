"""Miscellaneous text helpers for LLM answers and file names."""
import re
from typing import Optional


def strip_fences(raw: str) -> str:
    """Return the contents of markdown code fences, or the text unchanged if there are none."""
    if "```" not in raw:
        return raw
    parts = []
    inside = False
    for line in raw.splitlines():
        if line.strip().startswith("```"):
            inside = not inside
            continue
        if inside:
            parts.append(line)
    return "\n".join(parts) if parts else raw


def extract_json_object(raw: str) -> Optional[str]:
    """Return the outermost ``{...}`` span of the answer, or None if there is none.

    Fenced blocks are searched first; when they hold no object (e.g. only an
    ```html``` snippet) the whole answer is searched instead.
    """
    for text in (strip_fences(raw), raw):
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            return text[start:end + 1]
    return None


def safe_filename(path: str) -> str:
    """Flatten a path into a single filename component."""
    return re.sub(r"[\\/:]+", "_", path).strip("_") or "document"
