"""Turn a streamed model response into a summary plus a structured artifact.

The model is asked to answer in two parts:

    RESPONSE: <one or two sentences for the chat pane>

    JSON_START
    { ...payload... }
    JSON_END

Nothing in here raises for a bad payload. A missing or broken payload still
produces a well-formed document (the pipeline's error artifact) so callers
never special-case "no data".
"""
from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterable, Dict, Iterable, Optional, Union

from pagecrafter.pipelines import PipelineConfig

log = logging.getLogger(__name__)

# ```json / ```html / ``` (opening fence with optional language tag, or a bare closing fence)
_FENCE_RE = re.compile(r"```[A-Za-z0-9_+\-]*")


def _fragment_text(fragment: Any) -> str:
    if fragment is None:
        return ""
    if isinstance(fragment, str):
        return fragment
    text = getattr(fragment, "text", None)
    return text if isinstance(text, str) else ""


def aggregate_fragments(fragments: Iterable[Any]) -> str:
    """Concatenate every fragment in arrival order.

    Errors raised by the underlying stream propagate; no partial buffer is returned.
    """
    parts = []
    for fragment in fragments:
        text = _fragment_text(fragment)
        if text:
            parts.append(text)
    return "".join(parts)


async def aggregate_fragments_async(fragments: AsyncIterable[Any]) -> str:
    parts = []
    async for fragment in fragments:
        text = _fragment_text(fragment)
        if text:
            parts.append(text)
    return "".join(parts)


@dataclass(frozen=True)
class Found:
    start: int
    end: int

    def slice(self, text: str) -> str:
        return text[self.start : self.end]


@dataclass(frozen=True)
class NotFound:
    pass


ScanResult = Union[Found, NotFound]


def scan_between(text: str, opening: str, closing: str) -> ScanResult:
    """Span strictly between the first `opening` and the first `closing` after it."""
    open_idx = text.find(opening)
    if open_idx == -1:
        return NotFound()
    start = open_idx + len(opening)
    close_idx = text.find(closing, start)
    if close_idx == -1:
        return NotFound()
    return Found(start, close_idx)


@dataclass(frozen=True)
class ExtractedSegments:
    summary: str
    payload_raw: Optional[str]


def locate_segments(text: str, pipeline: PipelineConfig) -> ExtractedSegments:
    text = text or ""
    payload_raw: Optional[str] = None
    payload_span = scan_between(text, pipeline.payload_open, pipeline.payload_close)
    if isinstance(payload_span, Found):
        payload_raw = payload_span.slice(text).strip()

    summary = ""
    marker_idx = text.find(pipeline.summary_marker)
    if marker_idx != -1:
        start = marker_idx + len(pipeline.summary_marker)
        stop = text.find(pipeline.payload_open, start)
        summary = text[start : stop if stop != -1 else len(text)].strip()
    if not summary:
        summary = pipeline.fallback_summary
    return ExtractedSegments(summary=summary, payload_raw=payload_raw)


def sanitize_payload(payload: str) -> str:
    cleaned = payload or ""
    # Removing one fence can butt stray backticks together into a new one.
    while "```" in cleaned:
        cleaned = _FENCE_RE.sub("", cleaned)
    return cleaned.strip()


class DecodeFailure(enum.Enum):
    ABSENT = "absent"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Ok:
    document: Dict[str, Any]


@dataclass(frozen=True)
class Err:
    reason: DecodeFailure
    detail: str = ""


DecodeResult = Union[Ok, Err]


def decode_payload(payload_raw: Optional[str]) -> DecodeResult:
    if payload_raw is None:
        return Err(DecodeFailure.ABSENT, "no payload markers found")
    cleaned = sanitize_payload(payload_raw)
    if not cleaned:
        return Err(DecodeFailure.MALFORMED, "empty payload")
    try:
        value = json.loads(cleaned)
    except (ValueError, RecursionError) as e:
        return Err(DecodeFailure.MALFORMED, f"{type(e).__name__}: {e}")
    if not isinstance(value, dict):
        return Err(DecodeFailure.MALFORMED, f"expected a JSON object, got {type(value).__name__}")
    return Ok(value)


class Outcome(enum.Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"
    ABSENT = "absent"


def to_artifact(result: DecodeResult, pipeline: PipelineConfig) -> Dict[str, Any]:
    if isinstance(result, Ok):
        return result.document
    if result.reason is DecodeFailure.ABSENT:
        log.warning("%s pipeline: no structured data markers found", pipeline.name)
        return pipeline.error_artifact(pipeline.absent_message)
    if result.reason is DecodeFailure.MALFORMED:
        log.warning("%s pipeline: failed to parse payload: %s", pipeline.name, result.detail)
        return pipeline.error_artifact(pipeline.malformed_message)
    raise AssertionError(f"unhandled decode failure: {result.reason!r}")


def _outcome_for(result: DecodeResult) -> Outcome:
    if isinstance(result, Ok):
        return Outcome.SUCCESS
    if result.reason is DecodeFailure.ABSENT:
        return Outcome.ABSENT
    return Outcome.DEGRADED


@dataclass(frozen=True)
class ExtractionResult:
    response_text: str
    document: Dict[str, Any]
    outcome: Outcome = Outcome.SUCCESS


def compose_result(segments: ExtractedSegments, result: DecodeResult, pipeline: PipelineConfig) -> ExtractionResult:
    return ExtractionResult(
        response_text=segments.summary,
        document=to_artifact(result, pipeline),
        outcome=_outcome_for(result),
    )


def extract_text(text: str, pipeline: PipelineConfig) -> ExtractionResult:
    segments = locate_segments(text, pipeline)
    result = decode_payload(segments.payload_raw)
    extracted = compose_result(segments, result, pipeline)
    log.info(
        "%s pipeline: outcome=%s chars=%d",
        pipeline.name,
        extracted.outcome.value,
        len(text or ""),
    )
    return extracted


def run_pipeline(fragments: Iterable[Any], pipeline: PipelineConfig) -> ExtractionResult:
    return extract_text(aggregate_fragments(fragments), pipeline)


async def run_pipeline_async(fragments: AsyncIterable[Any], pipeline: PipelineConfig) -> ExtractionResult:
    return extract_text(await aggregate_fragments_async(fragments), pipeline)
