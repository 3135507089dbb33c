from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Section(BaseModel):
    heading: str = ""
    content: str = ""


class ReportDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str = "Untitled"
    author: Optional[str] = None
    sections: List[Section] = Field(default_factory=list)


class PageCode(BaseModel):
    title: str = ""
    html: str = ""
    css: str = ""
    js: str = ""


class CodeBundle(BaseModel):
    model_config = ConfigDict(extra="allow")

    html: str = ""
    css: str = ""
    js: str = ""
    pages: Optional[Dict[str, PageCode]] = None


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Older clients post {"message": ...}
    prompt: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("prompt", "message"),
        description="What the page should be",
    )
    previous_html: Optional[str] = Field(default=None, alias="previousHtml")
    previous_css: Optional[str] = Field(default=None, alias="previousCss")
    previous_js: Optional[str] = Field(default=None, alias="previousJs")
    project_id: Optional[str] = Field(default=None, alias="projectId")


class GeneratePdfRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1, description="What the document should contain")
    project_id: Optional[str] = Field(default=None, alias="projectId")


class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""


class ExportCodeRequest(BaseModel):
    code: CodeBundle
    filename: str = "pagecrafter-export"


class ExportReportRequest(BaseModel):
    document: ReportDocument
    filename: str = "document"


def code_response(response_text: str, document: Dict[str, Any]) -> Dict[str, Any]:
    """Shape an extracted code bundle the way the chat pane expects it."""
    code = {
        "html": document.get("html", ""),
        "css": document.get("css", ""),
        "js": document.get("js", ""),
    }
    out: Dict[str, Any] = {"response": response_text, "code": code}
    pages = document.get("pages")
    if isinstance(pages, dict) and pages:
        out["pages"] = pages
    return out


def document_response(response_text: str, document: Dict[str, Any]) -> Dict[str, Any]:
    return {"response": response_text, "document": document}
