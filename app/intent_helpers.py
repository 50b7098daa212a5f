"""
Centralized parsing helpers shared by the intent router, the extractor and the
messaging gateway.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

# ---------------------------
# Regex patterns
# ---------------------------

# "/ai cek harga" or "AI: buatkan SPH"
_COMMAND_PREFIX_RX = re.compile(r"^\s*(?:/ai\b|ai:)\s*", re.IGNORECASE)

_NON_DIGIT_RX = re.compile(r"[^0-9]")

# ---------------------------
# Public helpers (stable API)
# ---------------------------


def _first_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` substring of ``text``.

    Braces inside JSON string literals are ignored, so a value such as
    ``"notes": "paket {promo}"`` does not end the object early.
    """
    s = text or ""
    start = s.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(s)):
            ch = s[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return s[start : i + 1]
        # unbalanced from this brace; try the next one
        start = s.find("{", start + 1)
    return None


def _ensure_json(raw: str) -> Optional[Dict[str, Any]]:
    """Parse the first JSON object embedded in a model response, or None."""
    candidate = _first_json_object(raw)
    if candidate is None:
        return None
    try:
        obj = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def _normalize_msisdn(raw: Optional[str]) -> str:
    """Digits-only sender key: ``"+62 812-3456@c.us"`` -> ``"628123456"``."""
    user = (raw or "").split("@", 1)[0]
    return _NON_DIGIT_RX.sub("", user)


def _to_chat_id(number: str) -> str:
    if "@" in (number or ""):
        return number
    return f"{_normalize_msisdn(number)}@c.us"


def _strip_command_prefix(text: str) -> str:
    """Drop an optional ``/ai`` or ``ai:`` prefix and surrounding whitespace."""
    return _COMMAND_PREFIX_RX.sub("", (text or "").strip(), count=1).strip()


def _coerce_int(val: Any) -> Optional[int]:
    """Best-effort integer for model output ("500000", 500000.0); None if unusable."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, int):
        return val
    if isinstance(val, float):
        return int(val) if val.is_integer() else None
    if isinstance(val, str):
        digits = re.sub(r"[^0-9\-]", "", val)
        try:
            return int(digits)
        except ValueError:
            return None
    return None
