"""Coerce heterogeneous LLM output into block-JSON.

Models answer in many shapes: bare markdown, fenced JSON, ``{"message": ...}``,
``{"output_text": ...}``, partially-formed ``blocks`` arrays, or study-guide style
objects with ``summary``/``steps``/``key_terms``. ``normalize_ai_content`` folds all
of them into ``{"blocks": [...], ...}`` so the viewer only has
to render one format. Blocks the model produced beat legacy text fields, and other
top-level keys are kept as-is. Normalizing an already-normalized document returns equal
blocks.
"""

from __future__ import annotations

import json
from typing import Any


_TEXT_FIELDS = ("markdown", "text", "answer", "response", "message", "reply")


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _string_row(row: Any) -> list[str]:
    return [_to_text(cell) for cell in row] if isinstance(row, list) else []


def parse_json_like_string(raw: Any) -> dict[str, Any] | None:
    """Extract a JSON object from model text, tolerating fences and chatter."""
    text = _to_text(raw).strip()
    if not text:
        return None
    if text.startswith("```"):
        first_newline = text.find("\n")
        last_fence = text.rfind("```")
        if first_newline > -1 and last_fence > first_newline:
            text = text[first_newline + 1 : last_fence].strip()
    first_brace = text.find("{")
    last_brace = text.rfind("}")
    if first_brace > -1 and last_brace > first_brace:
        text = text[first_brace : last_brace + 1]
    if not text.startswith("{"):
        return None
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _normalize_table_block(block: dict[str, Any]) -> dict[str, Any]:
    rest = {k: v for k, v in block.items() if k not in {"headers", "rows", "data"}}
    headers = block.get("headers")
    rows = block.get("rows")
    data = block.get("data")
    data_obj = data if isinstance(data, dict) else None
    content = block.get("content")
    content_obj = content if isinstance(content, dict) else None

    if isinstance(headers, list):
        resolved_headers = [_to_text(h) for h in headers]
    elif content_obj is not None and isinstance(content_obj.get("headers"), list):
        resolved_headers = [_to_text(h) for h in content_obj["headers"]]
    elif data_obj is not None and isinstance(data_obj.get("headers"), list):
        resolved_headers = [_to_text(h) for h in data_obj["headers"]]
    else:
        resolved_headers = []

    if isinstance(rows, list):
        resolved_rows = rows
    elif content_obj is not None and isinstance(content_obj.get("rows"), list):
        resolved_rows = content_obj["rows"]
    elif data_obj is not None and isinstance(data_obj.get("rows"), list):
        resolved_rows = data_obj["rows"]
    else:
        resolved_rows = []

    resolved_data = data if isinstance(data, list) else []

    if not resolved_rows and resolved_data:
        if not resolved_headers:
            # Headerless data grids carry the header row first.
            return {
                **rest,
                "type": "table",
                "headers": _string_row(resolved_data[0]),
                "rows": [_string_row(row) for row in resolved_data[1:]],
            }
        return {**rest, "type": "table", "headers": resolved_headers, "rows": [_string_row(r) for r in resolved_data]}
    return {**rest, "type": "table", "headers": resolved_headers, "rows": [_string_row(r) for r in resolved_rows]}


def _first_string(block: dict[str, Any], data_obj: dict[str, Any] | None, own_keys: tuple[str, ...], data_keys: tuple[str, ...]) -> str:
    for key in own_keys:
        if isinstance(block.get(key), str):
            return block[key]
    if data_obj is not None:
        for key in data_keys:
            if isinstance(data_obj.get(key), str):
                return data_obj[key]
    return ""


def normalize_blocks(blocks: list[Any]) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for raw in blocks:
        if not isinstance(raw, dict):
            normalized.append({"type": "text", "text": _to_text(raw)})
            continue
        block_type = _to_text(raw.get("type")).lower()
        data_obj = raw.get("data") if isinstance(raw.get("data"), dict) else None
        if block_type == "markdown":
            markdown = _first_string(raw, data_obj, ("markdown", "content"), ("content", "markdown"))
            rest = {k: v for k, v in raw.items() if k not in {"content", "markdown"}}
            block = {**rest, "type": "markdown"}
            if markdown:
                block["markdown"] = markdown
            normalized.append(block)
        elif block_type == "code":
            code = _first_string(raw, data_obj, ("code", "content"), ("content", "code"))
            if isinstance(raw.get("language"), str):
                language = raw["language"]
            elif data_obj is not None and isinstance(data_obj.get("language"), str):
                language = data_obj["language"]
            else:
                language = "plain"
            rest = {k: v for k, v in raw.items() if k not in {"content", "code"}}
            block = {**rest, "type": "code", "language": language}
            if code:
                block["code"] = code
            normalized.append(block)
        elif block_type == "table":
            normalized.append(_normalize_table_block(raw))
        else:
            normalized.append(raw)
    return normalized


def _finalize(content: dict[str, Any], blocks: list[dict[str, Any]]) -> dict[str, Any]:
    # Unknown top-level keys (job, raw, image) ride along untouched.
    result: dict[str, Any] = {**content, "blocks": blocks}
    for key in ("title", "summary", "language"):
        value = content.get(key)
        if not isinstance(value, str):
            continue
        if value.strip():
            result[key] = value.strip()
        else:
            result.pop(key)
    return result


def _markdown_from_steps(steps: list[Any]) -> str:
    lines: list[str] = []
    for index, step in enumerate(steps, start=1):
        if isinstance(step, str):
            lines.append(f"{index}. {step}")
            continue
        if not isinstance(step, dict):
            continue
        label = step["step"] if isinstance(step.get("step"), str) else f"Step {index}"
        if isinstance(step.get("content"), str):
            body = step["content"]
        elif isinstance(step.get("description"), str):
            body = step["description"]
        else:
            body = ""
        details = step["details"] if isinstance(step.get("details"), str) else ""
        formula = step["formula"] if isinstance(step.get("formula"), str) else ""
        parts = " ".join(part for part in (body, details, f"수식: {formula}" if formula else "") if part)
        lines.append(f"{index}. {label} - {parts}" if parts else f"{index}. {label}")
    if not lines:
        return ""
    return "## 풀이 절차\n" + "\n".join(lines)


def _table_from_object(obj: Any) -> dict[str, Any] | None:
    if not isinstance(obj, dict):
        return None
    if isinstance(obj.get("headers"), list):
        headers = [_to_text(h) for h in obj["headers"]]
    elif isinstance(obj.get("columns"), list):
        headers = [_to_text(h) for h in obj["columns"]]
    else:
        headers = []
    rows = [_string_row(r) for r in obj["rows"]] if isinstance(obj.get("rows"), list) else []
    if not headers and not rows:
        return None
    return {"type": "table", "headers": headers, "rows": rows}


def normalize_ai_content(content: Any) -> dict[str, Any]:
    if isinstance(content, str):
        parsed = parse_json_like_string(content)
        if parsed is not None:
            return normalize_ai_content(parsed)
        return _finalize({}, [{"type": "markdown", "markdown": content}])
    if not isinstance(content, dict):
        return _finalize({}, [{"type": "markdown", "markdown": _to_text(content)}])

    raw_output_text = content.get("output_text")
    if isinstance(raw_output_text, str) and raw_output_text.strip():
        parsed = parse_json_like_string(raw_output_text)
        if parsed is not None:
            return normalize_ai_content(parsed)
    output_text = raw_output_text.strip() if isinstance(raw_output_text, str) else ""

    blocks = content.get("blocks")
    if isinstance(blocks, list) and blocks:
        return _finalize(content, normalize_blocks(blocks))

    # Legacy single-field answers only count when the model produced no blocks.
    for key in _TEXT_FIELDS:
        value = content.get(key)
        if isinstance(value, str) and value.strip():
            return _finalize(content, [{"type": "markdown", "markdown": value.strip()}])

    if output_text:
        return _finalize(content, [{"type": "markdown", "markdown": output_text}])

    fallback: list[dict[str, Any]] = []
    summary = content.get("summary")
    if isinstance(summary, str) and summary.strip():
        fallback.append({"type": "markdown", "markdown": f"## 핵심 개요\n{summary.strip()}"})
    steps = content.get("steps")
    steps_markdown = _markdown_from_steps(steps) if isinstance(steps, list) and steps else ""
    if steps_markdown:
        fallback.append({"type": "markdown", "markdown": steps_markdown})
    table = _table_from_object(content.get("key_terms")) or _table_from_object(content.get("analysis_table"))
    if table is not None:
        fallback.append(table)
    return _finalize(content, fallback)
