"""Session export.

Exports always include completed events and never truncate depth, so every
retained event appears exactly once in every format.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from lookout.server.activity.formatting import format_session_summary, format_tree_lines
from lookout.server.activity.tree import build_activity_tree
from lookout.server.errors import ValidationError
from lookout.server.models.enums import ExportFormat
from lookout.server.models.events import StoredEvent
from lookout.server.models.session import Session


def export_session(session: Session, events: Sequence[StoredEvent], fmt: ExportFormat | str) -> str:
    """Serialize *session* and its *events*.  Raises ``ValidationError`` on unknown formats."""
    try:
        fmt = ExportFormat(fmt)
    except ValueError:
        msg = f"Unsupported export format: {fmt}"
        raise ValidationError(msg) from None

    if fmt is ExportFormat.JSON:
        payload = {
            "session": session.model_dump(mode="json"),
            "events": [event.model_dump(mode="json") for event in events],
        }
        return json.dumps(payload, indent=2)

    tree = build_activity_tree(session, events, include_completed=True, max_depth=None)
    lines = format_tree_lines(tree)
    if fmt is ExportFormat.TEXT:
        return "\n".join([format_session_summary(session), "", *lines])
    return "\n".join(lines)
