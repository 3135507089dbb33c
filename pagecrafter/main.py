import logging
import os
import time
import uuid
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response

from pagecrafter import llm_client, projects
from pagecrafter.auth import extract_client_key, require_api_key
from pagecrafter.extraction import ExtractionResult, run_pipeline
from pagecrafter.llm_prompts import build_code_prompt, build_document_prompt
from pagecrafter.models import (
    CreateProjectRequest,
    ExportCodeRequest,
    ExportReportRequest,
    GeneratePdfRequest,
    GenerateRequest,
    code_response,
    document_response,
)
from pagecrafter.pipelines import CODE_PIPELINE, DOCUMENT_PIPELINE, PipelineConfig
from pagecrafter.ratelimit import build_limiter
from pagecrafter.render import build_zip, render_bundle_html, render_report_html

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

app = FastAPI(title="PageCrafter")

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_limiter = build_limiter()
_store = projects.build_store()


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


def _rate_limit_headers(remaining: int, reset_ts: int, *, limited: bool = False) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_ts),
    }
    if limited:
        headers["Retry-After"] = str(max(0, reset_ts - int(time.time())))
    return headers


def _rate_limited_response(remaining: int, reset_ts: int) -> JSONResponse:
    wait_seconds = max(0, reset_ts - int(time.time()))
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate limit exceeded",
            "reset": reset_ts,
            "retry_after_seconds": wait_seconds,
        },
        headers=_rate_limit_headers(remaining, reset_ts, limited=True),
    )


def _generate(
    prompt_text: str,
    pipeline: PipelineConfig,
    failure_message: str,
    headers: Dict[str, str],
) -> Tuple[Optional[ExtractionResult], Optional[JSONResponse]]:
    """Run one generation; returns (result, None) or (None, error response)."""
    try:
        fragments = llm_client.stream_text(prompt_text)
        result = run_pipeline(fragments, pipeline)
    except llm_client.MissingCredentialsError:
        log.error("%s generation: GEMINI_API_KEY is missing", pipeline.name)
        return None, JSONResponse(
            status_code=500, content={"error": "GEMINI_API_KEY is not configured"}, headers=headers
        )
    except Exception:
        log.exception("%s generation failed", pipeline.name)
        return None, JSONResponse(status_code=500, content={"error": failure_message}, headers=headers)
    return result, None


def _client_key(request: Request, api_key: str) -> str:
    return extract_client_key(api_key, request.client.host if request.client else "anon")


def _record(project_id: str, prompt: str, response_text: str, **artifact: Any) -> None:
    # The project can be deleted while the model is still streaming.
    try:
        _store.record_exchange(project_id, prompt, response_text, **artifact)
    except projects.ProjectNotFound:
        log.warning("projects: id=%s deleted during generation; history not saved", project_id)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_client.status()


@app.post("/api/generate")
def generate_code(req: GenerateRequest, request: Request, api_key: str = Depends(require_api_key)):
    allowed, remaining, reset_ts = _limiter.check_and_increment("gen", _client_key(request, api_key))
    if not allowed:
        return _rate_limited_response(remaining, reset_ts)
    headers = _rate_limit_headers(remaining, reset_ts)

    if req.project_id and _store.get(req.project_id) is None:
        return JSONResponse(status_code=404, content={"error": "project not found"}, headers=headers)

    log.info("code generation: starting prompt_chars=%d", len(req.prompt))
    prompt_text = build_code_prompt(req.prompt, req.previous_html, req.previous_css, req.previous_js)
    result, error = _generate(prompt_text, CODE_PIPELINE, "Failed to generate code.", headers)
    if error is not None:
        return error

    body = code_response(result.response_text, result.document)
    if req.project_id:
        _record(req.project_id, req.prompt, result.response_text, code=body["code"])
    return JSONResponse(body, headers=headers)


@app.post("/api/generate-pdf")
def generate_pdf(req: GeneratePdfRequest, request: Request, api_key: str = Depends(require_api_key)):
    allowed, remaining, reset_ts = _limiter.check_and_increment("gen", _client_key(request, api_key))
    if not allowed:
        return _rate_limited_response(remaining, reset_ts)
    headers = _rate_limit_headers(remaining, reset_ts)

    if req.project_id and _store.get(req.project_id) is None:
        return JSONResponse(status_code=404, content={"error": "project not found"}, headers=headers)

    log.info("document generation: starting prompt_chars=%d", len(req.prompt))
    result, error = _generate(
        build_document_prompt(req.prompt), DOCUMENT_PIPELINE, "Failed to generate PDF content.", headers
    )
    if error is not None:
        return error

    body = document_response(result.response_text, result.document)
    if req.project_id:
        _record(req.project_id, req.prompt, result.response_text, document=result.document)
    return JSONResponse(body, headers=headers)


@app.get("/api/projects")
def list_projects(api_key: str = Depends(require_api_key)) -> Dict[str, Any]:
    return {"projects": _store.list()}


@app.post("/api/projects", status_code=201)
def create_project(req: CreateProjectRequest, api_key: str = Depends(require_api_key)) -> Dict[str, Any]:
    project = projects.new_project(req.name.strip(), req.description.strip())
    _store.put(project)
    log.info("projects: created id=%s", project["id"])
    return project


@app.get("/api/projects/{project_id}")
def get_project(project_id: str, api_key: str = Depends(require_api_key)):
    project = _store.get(project_id)
    if project is None:
        return JSONResponse(status_code=404, content={"error": "project not found"})
    return project


@app.delete("/api/projects/{project_id}")
def delete_project(project_id: str, api_key: str = Depends(require_api_key)):
    if not _store.delete(project_id):
        return JSONResponse(status_code=404, content={"error": "project not found"})
    return {"deleted": project_id}


def _attachment(filename: str, ext: str) -> Dict[str, str]:
    safe = "".join(c for c in filename if c.isalnum() or c in "-_") or "export"
    return {"Content-Disposition": f'attachment; filename="{safe}.{ext}"'}


@app.post("/api/export/html")
def export_html(req: ExportCodeRequest, api_key: str = Depends(require_api_key)) -> HTMLResponse:
    html = render_bundle_html(req.code.model_dump())
    return HTMLResponse(html, headers=_attachment(req.filename, "html"))


@app.post("/api/export/zip")
def export_zip(req: ExportCodeRequest, api_key: str = Depends(require_api_key)) -> Response:
    data = build_zip(req.code.model_dump(exclude_none=True))
    return Response(content=data, media_type="application/zip", headers=_attachment(req.filename, "zip"))


@app.post("/api/export/report")
def export_report(req: ExportReportRequest, api_key: str = Depends(require_api_key)) -> HTMLResponse:
    html = render_report_html(req.document.model_dump())
    return HTMLResponse(html, headers=_attachment(req.filename, "html"))
