from __future__ import annotations

from pathlib import PurePath

_TRIM_TOKEN = "trim."


def sanitize_filename(value: str, *, fallback: str = "attachment") -> str:
    """Return a staging-safe base filename while preserving readable names."""
    base = PurePath(value.replace("\\", "/")).name
    cleaned_chars: list[str] = []
    for char in base:
        codepoint = ord(char)
        if codepoint < 32 or codepoint == 127:
            cleaned_chars.append("_")
            continue
        cleaned_chars.append(char)

    cleaned = "".join(cleaned_chars).strip()
    if cleaned in {"", ".", ".."}:
        return fallback
    return cleaned


def split_extension(filename: str) -> tuple[str, str]:
    path = PurePath(filename)
    return path.stem, path.suffix.lstrip(".").lower()


def strip_trim_token(stem: str) -> str:
    # Trimmed captures are exported as "trim.<id>"; the token carries no meaning upstream.
    cleaned = stem.replace(_TRIM_TOKEN, "")
    return cleaned or stem
