# infra/signer.py
import hashlib
import hmac
from typing import List, Optional

from utils.time import utc_ms

AUTH_PATH = "GET/realtime"
AUTH_WINDOW_MS = 1000


def sign(secret: str, payload: str) -> str:
    """HMAC-SHA256 of payload keyed by secret, lowercase hex. Empty payload -> ""."""
    if not payload:
        return ""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def auth_args(api_key: str, api_secret: str,
              window_ms: int = AUTH_WINDOW_MS,
              now_ms: Optional[int] = None) -> List[str]:
    """
    Build the ``args`` of an auth frame: [api_key, expires, signature].

    Bybit signs ``"GET/realtime" + expires`` where ``expires`` is a unix ms
    timestamp in the near future. The server rejects an expiry that is already
    in the past, so this must run right before the frame is written.
    """
    now = utc_ms() if now_ms is None else now_ms
    expires = str(now + window_ms)
    return [api_key, expires, sign(api_secret, AUTH_PATH + expires)]


def auth_frame(api_key: str, api_secret: str,
               window_ms: int = AUTH_WINDOW_MS,
               now_ms: Optional[int] = None) -> dict:
    return {"op": "auth", "args": auth_args(api_key, api_secret, window_ms, now_ms)}
