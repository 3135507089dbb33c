from __future__ import annotations

from typing import Optional

from pagecrafter.pipelines import CODE_PIPELINE, DOCUMENT_PIPELINE, PipelineConfig


def _format_rules(pipeline: PipelineConfig) -> str:
    return (
        "CRITICAL: You must return your response in two parts:\n"
        f"1. Start with '{pipeline.summary_marker} ' followed by a brief summary of what you built.\n"
        f"2. Then, provide the structured data exactly between {pipeline.payload_open} and "
        f"{pipeline.payload_close} markers.\n"
        f"Never write {pipeline.payload_open} or {pipeline.payload_close} anywhere else in your answer."
    )


_DOCUMENT_EXAMPLE = """{
  "title": "Impact of Climate Change 2024",
  "author": "PageCrafter AI",
  "sections": [
    {
      "heading": "Introduction",
      "content": "Climate change refers to long-term shifts in temperatures and weather patterns..."
    },
    {
      "heading": "Current Trends",
      "content": "Recent data shows a significant increase in global average temperatures..."
    }
  ]
}"""

_CODE_EXAMPLE = """{
  "html": "<main class=\\"hero\\"><h1>Fresh Bakes Daily</h1><button id=\\"order\\">Order now</button></main>",
  "css": ".hero { display: grid; place-items: center; min-height: 100vh; }",
  "js": "document.getElementById('order').addEventListener('click', () => alert('Thanks!'));",
  "pages": {
    "about": {
      "title": "About",
      "html": "<section><h2>Our story</h2></section>",
      "css": "",
      "js": ""
    }
  }
}"""


def build_document_prompt(prompt: str) -> str:
    pipeline = DOCUMENT_PIPELINE
    return f"""You are PageCrafter PDF AI, an expert document designer.
Your job is to generate professional document content based on the user's request.

{_format_rules(pipeline)}

Example Format:
{pipeline.summary_marker} I have created a professional report on Climate Change.

{pipeline.payload_open}
{_DOCUMENT_EXAMPLE}
{pipeline.payload_close}

Guidelines:
- Keep the headings clear and professional.
- Use detailed and informative content for each section.
- Ensure the JSON is valid.

User request: {prompt}"""


def build_code_prompt(
    prompt: str,
    previous_html: Optional[str] = None,
    previous_css: Optional[str] = None,
    previous_js: Optional[str] = None,
) -> str:
    pipeline = CODE_PIPELINE
    previous = ""
    if previous_html or previous_css or previous_js:
        previous = f"""
The user is iterating on an existing page. Modify it to satisfy the request
instead of starting over, and return the complete updated code.

Current HTML:
{previous_html or ""}

Current CSS:
{previous_css or ""}

Current JavaScript:
{previous_js or ""}
"""
    return f"""You are PageCrafter AI, an expert front-end developer.
Create a single self-contained web page from the user's request.

{_format_rules(pipeline)}

The JSON object has string fields "html" (body markup only, no <html>/<head>),
"css" and "js". Use "pages" only when the user asks for several pages; each
entry is keyed by a short slug and has "title", "html", "css" and "js".
Do not load external scripts or stylesheets.

Example Format:
{pipeline.summary_marker} I built a landing page for a bakery with an order button.

{pipeline.payload_open}
{_CODE_EXAMPLE}
{pipeline.payload_close}
{previous}
User request: {prompt}"""
