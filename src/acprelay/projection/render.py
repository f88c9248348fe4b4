"""Text rendering for projected tool and status messages."""

from __future__ import annotations

from typing import Any, Iterable

FALLBACK_TOOL_LABEL = "tool"

_KIND_LABELS = {
    "read": "Read",
    "edit": "Edit",
    "delete": "Delete",
    "move": "Move",
    "search": "Search",
    "execute": "Run command",
    "think": "Think",
    "fetch": "Fetch",
}

_PLAN_MARKERS = {
    "completed": "[x]",
    "in_progress": "[~]",
    "pending": "[ ]",
}


def _get(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def content_text(content: Any) -> str:
    """Render an ACP content block as display text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    block_type = _get(content, "type")
    text = _get(content, "text")
    if isinstance(text, str) and block_type in (None, "text"):
        return text
    if block_type == "image":
        return "<image>"
    if block_type == "audio":
        return "<audio>"
    if block_type == "resource_link":
        return str(_get(content, "uri") or "<resource>")
    if block_type == "resource":
        return "<resource>"
    return "<content>"


def thought_text(text: str) -> str:
    return f"Thinking: {text}" if text else ""


def tool_title(title: Any, kind: Any, raw_input: Any) -> str | None:
    """Pick a display label for a tool call, or None when nothing stable is known."""
    if isinstance(title, str) and title.strip():
        return title.strip()
    if isinstance(raw_input, dict):
        name = raw_input.get("tool")
        if isinstance(name, str) and name.strip():
            return name.strip()
    kind_value = getattr(kind, "value", kind)
    if isinstance(kind_value, str):
        return _KIND_LABELS.get(kind_value)
    return None


def tool_start_detail(raw_input: dict[str, Any]) -> str | None:
    command = raw_input.get("command")
    if raw_input.get("tool") == "run_command" and command:
        return f"cmd=`{command}`"
    return None


def tool_update_detail(status: str, raw_output: dict[str, Any], content: Iterable[Any]) -> str | None:
    """Summarize a tool update the way the console shows finished runs."""
    if status == "completed":
        bits: list[str] = []
        rc = raw_output.get("returncode")
        err = raw_output.get("error")
        if rc is not None:
            bits.append(f"rc={rc}")
        if err:
            bits.append(f"error={err}")
        if raw_output.get("truncated"):
            bits.append("truncated")
        return " ".join(bits) if bits else "done"
    text = raw_output.get("content") or raw_output.get("error")
    if text:
        return str(text)
    parts: list[str] = []
    for item in content or []:
        inner = _get(item, "content")
        inner_text = _get(inner, "text") if inner is not None else None
        if isinstance(inner_text, str) and inner_text:
            parts.append(inner_text)
    return "\n".join(parts) or None


def tool_line(title: str | None, status: str, detail: str | None) -> str:
    line = f"🛠️ Tool[{status}]: {title or FALLBACK_TOOL_LABEL}"
    return f"{line} {detail}" if detail else line


def usage_text(usage: tuple[int, int] | None) -> str:
    if usage is None:
        return "Usage updated"
    used, size = usage
    if size > 0:
        pct_left = max(0.0, (size - used) / size * 100.0)
        return f"Usage: {used}/{size} tokens ({pct_left:.0f}% left)"
    return f"Usage: {used} tokens"


def commands_text(names: list[str]) -> str:
    if not names:
        return "Commands: none"
    return "Commands: " + ", ".join(f"/{name}" for name in names)


def mode_text(mode_id: Any) -> str:
    return f"[mode -> {mode_id}]" if mode_id else "[mode updated]"


def config_text(pairs: list[tuple[str, str]]) -> str:
    if not pairs:
        return "Config updated"
    return "Config: " + ", ".join(f"{name}={value}" for name, value in pairs)


def session_info_text(title: Any) -> str:
    return f"Session: {title}" if title else "Session info updated"


def plan_text(items: list[tuple[str, str]]) -> str:
    lines = ["Plan:"]
    for status, content in items:
        if content:
            lines.append(f"{_PLAN_MARKERS.get(status, '[ ]')} {content}")
    return "\n".join(lines)
