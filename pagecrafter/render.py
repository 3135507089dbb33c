from __future__ import annotations

import io
import re
import zipfile
from pathlib import Path
from typing import Any, Dict, List

from jinja2 import Environment, FileSystemLoader, select_autoescape

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html", "xml"]),
    enable_async=False,
)

_SLUG_RE = re.compile(r"[^a-z0-9_-]+")


def _page_dict(code: Dict[str, Any]) -> Dict[str, str]:
    return {k: str(code.get(k) or "") for k in ("title", "html", "css", "js")}


def render_bundle_html(code: Dict[str, Any], title: str = "PageCrafter Export") -> str:
    """A single standalone HTML file with the CSS and JS inlined."""
    page = _page_dict(code)
    return _env.get_template("page.html").render(page=page, title=page["title"] or title, linked=False)


def _slug(key: str) -> str:
    s = _SLUG_RE.sub("-", (key or "").strip().lower()).strip("-")
    return s or "page"


def build_zip(code: Dict[str, Any], title: str = "PageCrafter Export") -> bytes:
    """index.html + styles.css + script.js, and one extra HTML file per entry in `pages`."""
    tpl = _env.get_template("page.html")
    page = _page_dict(code)
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(
            "index.html",
            tpl.render(page=page, title=page["title"] or title, linked=True, css_href="styles.css", js_href="script.js"),
        )
        zf.writestr("styles.css", page["css"])
        zf.writestr("script.js", page["js"])
        pages = code.get("pages")
        if isinstance(pages, dict):
            used = {"index"}
            for key, sub in pages.items():
                if not isinstance(sub, dict):
                    continue
                name = _slug(str(key))
                while name in used:
                    name += "-1"
                used.add(name)
                zf.writestr(f"{name}.html", tpl.render(page=_page_dict(sub), title=sub.get("title") or key, linked=False))
    return buf.getvalue()


def _paragraphs(content: str) -> List[str]:
    return [p.strip() for p in re.split(r"\n\s*\n", content or "") if p.strip()]


def render_report_html(document: Dict[str, Any]) -> str:
    sections = []
    for sec in document.get("sections") or []:
        if not isinstance(sec, dict):
            continue
        sections.append(
            {"heading": str(sec.get("heading") or ""), "paragraphs": _paragraphs(str(sec.get("content") or ""))}
        )
    doc = {
        "title": str(document.get("title") or "Untitled"),
        "author": document.get("author") or "",
        "sections": sections,
    }
    return _env.get_template("report.html").render(document=doc)
