import hashlib
import os
from typing import Optional, Set

from fastapi import Header, HTTPException


def _load_keys() -> Set[str]:
    raw = os.getenv("API_KEYS", "")
    return {k.strip() for k in raw.split(",") if k.strip()}

API_KEYS: Set[str] = _load_keys()


def check_api_key(key: str | None) -> bool:
    """
    Returns True if:
      - API_KEYS is empty (dev mode), or
      - 'key' is provided and is in API_KEYS.
    """
    if not API_KEYS:
        return True
    return bool(key) and key in API_KEYS


def require_api_key(x_api_key: Optional[str] = Header(default=None)) -> str:
    if not check_api_key(x_api_key):
        raise HTTPException(status_code=401, detail={"error": "invalid or missing API key"})
    return x_api_key or ""


def extract_client_key(api_key: str, fallback: str) -> str:
    """Rate-limit bucket key: a hash of the API key when present, else the client address."""
    if api_key:
        return "key:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
    return "ip:" + (fallback or "anon")
