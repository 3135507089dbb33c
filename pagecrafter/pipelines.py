from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict

SUMMARY_MARKER = "RESPONSE:"
PAYLOAD_OPEN = "JSON_START"
PAYLOAD_CLOSE = "JSON_END"


@dataclass(frozen=True)
class PipelineConfig:
    """Everything that differs between the code-bundle and document pipelines."""

    name: str
    fallback_summary: str
    absent_message: str
    malformed_message: str
    error_artifact: Callable[[str], Dict[str, Any]]
    summary_marker: str = SUMMARY_MARKER
    payload_open: str = PAYLOAD_OPEN
    payload_close: str = PAYLOAD_CLOSE


def _document_error(message: str) -> Dict[str, Any]:
    return {"title": "Error", "sections": [{"heading": "Error", "content": message}]}


_ERROR_CSS = (
    "body{font-family:system-ui,-apple-system,Segoe UI,Roboto,sans-serif;margin:0;"
    "min-height:100vh;display:flex;align-items:center;justify-content:center;background:#f8fafc}"
    ".pc-error{max-width:480px;padding:32px;border-radius:16px;background:#fff;"
    "border:1px solid #fecaca;color:#7f1d1d}"
)


def _code_error(message: str) -> Dict[str, Any]:
    html = f'<div class="pc-error"><h1>Error</h1><p>{message}</p></div>'
    return {"title": "Error", "html": html, "css": _ERROR_CSS, "js": ""}


DOCUMENT_PIPELINE = PipelineConfig(
    name="document",
    fallback_summary="I have generated your document content.",
    absent_message="AI failed to return structured data (no structured data found).",
    malformed_message="Failed to parse document data.",
    error_artifact=_document_error,
)

CODE_PIPELINE = PipelineConfig(
    name="code",
    fallback_summary="I have generated your web page.",
    absent_message="AI failed to return page code (no structured data found).",
    malformed_message="Failed to parse page code.",
    error_artifact=_code_error,
)
