from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Iterator, List, Optional

import requests

log = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash").strip()
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "120") or 120)
except Exception:
    LLM_TIMEOUT_SECS = 120.0
try:
    TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7") or 0.7)
except Exception:
    TEMPERATURE = 0.7


class GenerationError(Exception):
    """The model could not be reached or the stream broke off."""


class MissingCredentialsError(GenerationError):
    """No API key configured; raised before any request is made."""


def status() -> Dict[str, Any]:
    return {
        "provider": "gemini" if GEMINI_API_KEY else None,
        "model": GEMINI_MODEL,
        "has_token": bool(GEMINI_API_KEY),
    }


def _stream_endpoint() -> str:
    return f"{GEMINI_BASE_URL}/{GEMINI_MODEL}:streamGenerateContent"


def _chunk_texts(payload: Dict[str, Any]) -> List[str]:
    texts: List[str] = []
    for cand in payload.get("candidates") or []:
        content = cand.get("content") or {}
        for part in content.get("parts") or []:
            # Thought summaries are not part of the answer
            if part.get("thought"):
                continue
            txt = part.get("text")
            if isinstance(txt, str) and txt:
                texts.append(txt)
    return texts


def _decode_line(raw: Any) -> Optional[Dict[str, Any]]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    line = (raw or "").strip()
    if not line:
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
    try:
        payload = json.loads(line)
    except ValueError:
        log.debug("gemini stream: skipping undecodable line: %.120s", line)
        return None
    return payload if isinstance(payload, dict) else None


def stream_text(prompt: str) -> Iterator[str]:
    """Yield text fragments of the model's answer as they arrive.

    Raises MissingCredentialsError up front when no key is configured and
    GenerationError if the request fails or the stream breaks mid-way.
    """
    if not GEMINI_API_KEY:
        raise MissingCredentialsError("GEMINI_API_KEY is not configured")

    body = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": TEMPERATURE,
            "thinkingConfig": {"thinkingBudget": -1},
        },
    }
    return _iter_stream(body)


def _iter_stream(body: Dict[str, Any]) -> Iterator[str]:
    try:
        resp = requests.post(
            _stream_endpoint(),
            params={"alt": "sse", "key": GEMINI_API_KEY},
            json=body,
            stream=True,
            timeout=LLM_TIMEOUT_SECS,
        )
    except requests.RequestException as e:
        raise GenerationError(f"Gemini request error: {e!r}") from e

    if resp.status_code != 200:
        try:
            msg = resp.text[:400]
        except Exception:
            msg = str(resp.status_code)
        log.warning("Gemini generation HTTP %s: %s", resp.status_code, msg)
        raise GenerationError(f"Gemini returned HTTP {resp.status_code}")

    count = 0
    try:
        for raw in resp.iter_lines():
            payload = _decode_line(raw)
            if payload is None:
                continue
            if isinstance(payload.get("error"), dict):
                err = payload["error"]
                raise GenerationError(f"Gemini stream error: {err.get('message') or err}")
            for text in _chunk_texts(payload):
                count += 1
                yield text
    except requests.RequestException as e:
        raise GenerationError(f"Gemini stream interrupted: {e!r}") from e
    finally:
        close = getattr(resp, "close", None)
        if callable(close):
            close()
    log.info("gemini stream finished fragments=%d model=%s", count, GEMINI_MODEL)
