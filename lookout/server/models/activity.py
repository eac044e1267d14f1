"""Activity tree and display directive models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from lookout.server.models.events import DisplayInfo


class TreeNode(BaseModel):
    id: str
    event_type: str
    name: str
    description: str = ""
    status: str
    timestamp: datetime
    duration_ms: float | None = None
    parent_id: str | None = None
    correlation_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    display_info: DisplayInfo | None = None
    children: list[TreeNode] = Field(default_factory=list)


class ActivityTree(BaseModel):
    """Hierarchy rebuilt from a session's retained history.

    ``orphans`` holds root candidates that did not become ``root`` -- a forest
    is an accepted outcome when parents were evicted or never arrived.
    """

    session_id: str
    root: TreeNode | None = None
    orphans: list[TreeNode] = Field(default_factory=list)

    def iter_nodes(self) -> list[tuple[TreeNode, int]]:
        """Return ``(node, depth)`` pairs in display order (pre-order)."""
        tops = ([self.root] if self.root else []) + self.orphans
        out: list[tuple[TreeNode, int]] = []
        stack = [(node, 0) for node in reversed(tops)]
        while stack:
            node, depth = stack.pop()
            out.append((node, depth))
            stack.extend((child, depth + 1) for child in reversed(node.children))
        return out


class DisplayDirective(BaseModel):
    """Renderer-agnostic hint; a presentation layer maps keys to glyphs/colours."""

    icon_key: str
    color_key: str
    indent_level: int = 0


class FormattedLine(BaseModel):
    text: str
    directive: DisplayDirective
