# dosewatch/core/push_tokens.py
from __future__ import annotations

import re
from typing import Optional

# Markers left in the users table by simulators, dev builds and client fallbacks
PLACEHOLDER_MARKERS = ("test", "fallback", "dummy", "placeholder", "simulator", "undefined", "null")

_EXPO_RE = re.compile(r"^Expo(nent)?PushToken\[[A-Za-z0-9_\-]{10,}\]$")
# FCM registration tokens: "<instance id>:<long base64url body>"
_FCM_RE = re.compile(r"^[A-Za-z0-9_\-]{11,}:[A-Za-z0-9_\-]{100,}$")
# APNs device tokens: 64 hex chars
_APNS_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def is_expo_token(token: str) -> bool:
    return bool(_EXPO_RE.match(token))


def is_native_token(token: str) -> bool:
    return bool(_FCM_RE.match(token) or _APNS_RE.match(token))


def is_valid_push_token(token: Optional[str]) -> bool:
    """
    False for empty tokens, known placeholders, and anything that is neither
    an Expo token nor a native FCM/APNs token.
    """
    if not token or not token.strip():
        return False
    token = token.strip()
    low = token.lower()
    if any(m in low for m in PLACEHOLDER_MARKERS):
        return False
    return is_expo_token(token) or is_native_token(token)
