from __future__ import annotations

import base64
import json
from typing import Optional

def encode_cursor(start_after: Optional[int]) -> Optional[str]:
    if start_after is None:
        return None
    raw = json.dumps({"after": int(start_after)}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")

def decode_cursor(cursor: Optional[str]) -> Optional[int]:
    if not cursor:
        return None
    s = cursor.strip()
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    try:
        raw = base64.urlsafe_b64decode((s + pad).encode("utf-8"))
        obj = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    if isinstance(obj, dict) and isinstance(obj.get("after"), int) and not isinstance(obj["after"], bool):
        return obj["after"]
    return None
