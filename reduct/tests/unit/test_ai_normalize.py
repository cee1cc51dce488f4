from __future__ import annotations

from reduct.services.ai.normalize import normalize_ai_content, parse_json_like_string


def test_plain_string_becomes_single_markdown_block() -> None:
    result = normalize_ai_content("hello **world**")
    assert result == {"blocks": [{"type": "markdown", "markdown": "hello **world**"}]}


def test_fenced_json_is_unwrapped() -> None:
    raw = '```json\n{"title": " Plan ", "message": "Do the thing"}\n```'
    result = normalize_ai_content(raw)
    assert result["title"] == "Plan"
    assert result["blocks"] == [{"type": "markdown", "markdown": "Do the thing"}]


def test_blocks_win_over_single_field_answer() -> None:
    result = normalize_ai_content({"reply": "short answer", "blocks": [{"type": "markdown", "markdown": "kept"}]})
    assert result["blocks"] == [{"type": "markdown", "markdown": "kept"}]


def test_code_block_survives_alongside_message() -> None:
    result = normalize_ai_content(
        {"blocks": [{"type": "code", "code": "x=1", "language": "py"}], "message": "see code"}
    )
    assert result["blocks"] == [{"type": "code", "language": "py", "code": "x=1"}]


def test_unknown_top_level_keys_are_preserved() -> None:
    content = {
        "blocks": [{"type": "markdown", "markdown": "done"}],
        "job": {"id": "j1"},
        "image": {"url": "https://x/y.png"},
        "raw": "provider payload",
    }
    result = normalize_ai_content(content)
    assert result["job"] == {"id": "j1"}
    assert result["image"] == {"url": "https://x/y.png"}
    assert result["raw"] == "provider payload"
    assert result["blocks"] == [{"type": "markdown", "markdown": "done"}]


def test_legacy_text_used_when_blocks_empty() -> None:
    result = normalize_ai_content({"blocks": [], "message": "fallback", "job": {"id": "j2"}})
    assert result["blocks"] == [{"type": "markdown", "markdown": "fallback"}]
    assert result["job"] == {"id": "j2"}


def test_output_text_json_is_parsed() -> None:
    result = normalize_ai_content({"output_text": 'Sure! {"answer": "42"} hope that helps'})
    assert result["blocks"] == [{"type": "markdown", "markdown": "42"}]


def test_code_block_content_moves_to_code_and_defaults_language() -> None:
    result = normalize_ai_content({"blocks": [{"type": "code", "content": "print(1)"}]})
    assert result["blocks"] == [{"type": "code", "language": "plain", "code": "print(1)"}]


def test_study_guide_fallback_builds_summary_steps_and_table() -> None:
    result = normalize_ai_content(
        {
            "summary": "Integrals",
            "steps": ["Set up", {"step": "Solve", "content": "integrate", "formula": "x^2/2"}],
            "key_terms": {"headers": ["term", "meaning"], "rows": [["dx", 1]]},
        }
    )
    blocks = result["blocks"]
    assert blocks[0] == {"type": "markdown", "markdown": "## 핵심 개요\nIntegrals"}
    assert blocks[1]["markdown"].startswith("## 풀이 절차\n1. Set up")
    assert "2. Solve - integrate 수식: x^2/2" in blocks[1]["markdown"]
    assert blocks[2] == {"type": "table", "headers": ["term", "meaning"], "rows": [["dx", "1"]]}


def test_images_and_options_are_carried_through() -> None:
    result = normalize_ai_content(
        {"text": "see image", "images": [{"url": "https://x/y.png"}], "options": {"model": "m"}}
    )
    assert result["images"] == [{"url": "https://x/y.png"}]
    assert result["options"] == {"model": "m"}


def test_normalizing_output_again_keeps_blocks() -> None:
    samples = [
        "plain text",
        {"blocks": [{"type": "markdown", "content": "a"}, {"type": "code", "data": {"code": "x", "language": "py"}}]},
        {"summary": "s", "steps": ["one"], "analysis_table": {"columns": ["a"], "rows": [[1]]}},
        {"output_text": "final"},
    ]
    for sample in samples:
        first = normalize_ai_content(sample)
        second = normalize_ai_content(first)
        assert second["blocks"] == first["blocks"]


def test_parse_json_like_string_rejects_non_objects() -> None:
    assert parse_json_like_string("[1, 2]") is None
    assert parse_json_like_string("no json here") is None
    assert parse_json_like_string("") is None
