from pagecrafter.llm_prompts import build_code_prompt, build_document_prompt
from pagecrafter.pipelines import CODE_PIPELINE, DOCUMENT_PIPELINE


def test_document_prompt_carries_marker_contract():
    p = build_document_prompt("a report on bees")
    for token in (DOCUMENT_PIPELINE.summary_marker, DOCUMENT_PIPELINE.payload_open, DOCUMENT_PIPELINE.payload_close):
        assert token in p
    assert p.rstrip().endswith("User request: a report on bees")


def test_code_prompt_without_previous_code():
    p = build_code_prompt("a todo app")
    assert CODE_PIPELINE.payload_open in p and CODE_PIPELINE.payload_close in p
    assert "Current HTML" not in p


def test_code_prompt_includes_previous_code():
    p = build_code_prompt("make it dark", previous_html="<div id='x'></div>", previous_js="let n = 0;")
    assert "Current HTML" in p
    assert "<div id='x'></div>" in p
    assert "let n = 0;" in p
