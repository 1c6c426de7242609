from __future__ import annotations

import math
import os

from .constants import NAME_MAX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_name(value, *, max_chars: int = NAME_MAX_CHARS) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars and len(s) > int(max_chars):
        return None

    # Keep this conservative: avoid embedded newlines or NUL, which frequently
    # cause UI/log formatting issues.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    try:
        s.encode("utf-8", "strict")
    except UnicodeError:
        return None

    return s


def coerce_coord(value) -> float | int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def parse_position(args: list) -> tuple[float | int, float | int] | None:
    """Accept ``({x, y})`` or ``(x, y)`` position arguments."""
    if len(args) == 1 and isinstance(args[0], dict):
        x = coerce_coord(args[0].get("x"))
        y = coerce_coord(args[0].get("y"))
    elif len(args) >= 2:
        x = coerce_coord(args[0])
        y = coerce_coord(args[1])
    else:
        return None
    if x is None or y is None:
        return None
    return x, y
