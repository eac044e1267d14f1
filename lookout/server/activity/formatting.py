"""Renderer-agnostic formatting.

Everything here is a pure function of its inputs.  Output carries abstract
display directives (icon key, colour key, indent level); turning those into
glyphs or escape codes is the presentation layer's job.
"""

from __future__ import annotations

from lookout.server.models.activity import ActivityTree, DisplayDirective, FormattedLine, TreeNode
from lookout.server.models.enums import DisplayAction, EventCategory, EventStatus, EventType
from lookout.server.models.events import EventIn
from lookout.server.models.session import Session

INDENT = "  "

_INDENT_BY_CATEGORY = {
    EventCategory.TASK: 0,
    EventCategory.SUBAGENT: 1,
    EventCategory.TOOL: 2,
    EventCategory.MCP: 2,
}

_ICON_BY_CATEGORY = {
    EventCategory.TASK: "task",
    EventCategory.SUBAGENT: "subagent",
    EventCategory.TOOL: "tool",
    EventCategory.MCP: "protocol",
}


def format_duration(duration_ms: float | None) -> str:
    """``850ms``, ``1.5s`` or ``2m 5s``; empty for missing/zero durations."""
    if not duration_ms:
        return ""
    if duration_ms < 1000:
        return f"{round(duration_ms)}ms"
    if duration_ms < 60_000:
        return f"{duration_ms / 1000:.1f}s"
    minutes, rest = divmod(int(duration_ms), 60_000)
    return f"{minutes}m {rest // 1000}s"


def indent_for(event_type: EventType) -> int:
    """Indent level inferred from the event category (task=0, subagent=1, tool/protocol=2)."""
    return _INDENT_BY_CATEGORY.get(event_type.category, 1)


def icon_key_for(event_type: EventType) -> str:
    key = _ICON_BY_CATEGORY[event_type.category]
    return f"{key}_error" if event_type.is_failure else key


def display_directive(event: EventIn) -> DisplayDirective:
    hint = event.display_info
    return DisplayDirective(
        icon_key=(hint.icon_key if hint and hint.icon_key else icon_key_for(event.event_type)),
        color_key=(hint.color_key if hint and hint.color_key else event.status.value),
        indent_level=indent_for(event.event_type),
    )


def display_action(event: EventIn) -> DisplayAction:
    """How a live view should apply the event: new line, in-place update, or close."""
    if event.status == EventStatus.RUNNING:
        return DisplayAction.UPDATE
    if event.status.is_terminal:
        return DisplayAction.FINALIZE
    return DisplayAction.APPEND


def format_event_line(event: EventIn, *, show_timings: bool = True, indent_level: int | None = None) -> FormattedLine:
    """One human-readable line: ``name -> description (duration) [status]``."""
    directive = display_directive(event)
    if indent_level is not None:
        directive.indent_level = indent_level
    text = _line_text(
        event.name,
        event.description,
        event.duration_ms if show_timings else None,
        event.status.value,
        directive.indent_level,
    )
    return FormattedLine(text=text, directive=directive)


def format_plain(event: EventIn, *, show_timings: bool = True) -> str:
    """Minimal single-line form: ``[timestamp] name: status (Nms)``."""
    prefix = f"[{event.timestamp.isoformat()}] " if show_timings else ""
    duration = f" ({round(event.duration_ms)}ms)" if show_timings and event.duration_ms else ""
    return f"{prefix}{event.name}: {event.status.value}{duration}"


def format_error(event: EventIn) -> str:
    message = event.details.get("error_message") or event.details.get("error") or "Unknown error"
    return f"{event.name}: {message}"


def format_slow_alert(event: EventIn, threshold_ms: float) -> str:
    return (
        f"Slow operation detected: {event.name} "
        f"({format_duration(event.duration_ms)} > {format_duration(threshold_ms) or '0ms'} threshold)"
    )


# -- Trees and sessions ------------------------------------------------------


def format_tree_lines(tree: ActivityTree, *, show_timings: bool = True) -> list[str]:
    """One line per node, root first then orphans, indented by depth."""
    return [_node_text(node, depth, show_timings) for node, depth in tree.iter_nodes()]


def format_session_summary(session: Session) -> str:
    duration = format_duration(session.metrics.total_duration_ms)
    status = f"{session.status.value} ({duration})" if duration else session.status.value
    return "\n".join([
        f"Session: {session.root_task}",
        f"  Status: {status}",
        f"  Tools: {session.metrics.tools_used}",
        f"  Protocol calls: {session.metrics.protocol_calls}",
        f"  Errors: {session.metrics.error_count}",
    ])


def _node_text(node: TreeNode, depth: int, show_timings: bool) -> str:
    return _line_text(
        node.name,
        node.description,
        node.duration_ms if show_timings else None,
        node.status,
        depth,
    )


def _line_text(name: str, description: str, duration_ms: float | None, status: str, indent_level: int) -> str:
    parts = [name]
    if description and description != name:
        parts.append(f"-> {description}")
    duration = format_duration(duration_ms)
    if duration:
        parts.append(f"({duration})")
    parts.append(f"[{status}]")
    return INDENT * indent_level + " ".join(parts)
