"""Activity tree reconstruction.

Rebuilds the parent/child hierarchy from a session's flat, possibly
reordered, possibly truncated event history:

1. Build an ``id -> TreeNode`` map (optionally skipping completed events
   that no unfinished event hangs from).
2. Attach every node whose ``parent_id`` resolves to its parent, in history
   order, so siblings appear in arrival order.  Anything else is a root
   candidate.
3. Pick the root (earliest task-type candidate, else a synthetic root built
   from the session) and cut children below ``max_depth``.

Attachment is map insertion keyed by stored ids that are assigned after the
producer sends ``parent_id``, so no parent chain is ever followed
recursively.
"""

from __future__ import annotations

from collections.abc import Sequence

from lookout.server.models.activity import ActivityTree, TreeNode
from lookout.server.models.enums import EventCategory, EventStatus, EventType
from lookout.server.models.events import StoredEvent
from lookout.server.models.session import Session

SYNTHETIC_ROOT_ID = "root"


def build_activity_tree(
    session: Session,
    events: Sequence[StoredEvent],
    *,
    include_completed: bool = True,
    max_depth: int | None = 5,
) -> ActivityTree:
    """Build the activity tree for *session* from its retained *events*.

    ``max_depth=None`` disables truncation.  With ``include_completed=False``
    successful events are dropped unless an unfinished event descends from
    them.
    """
    if not events:
        return ActivityTree(session_id=session.id)

    kept = None if include_completed else _unfinished_with_ancestors(events)

    # -- Pass 1: nodes ---------------------------------------------------------
    nodes: dict[str, TreeNode] = {}
    ordered: list[TreeNode] = []
    for event in events:
        if kept is not None and event.id not in kept:
            continue
        node = _node_from(event)
        nodes[event.id] = node
        ordered.append(node)

    # -- Pass 2: attach --------------------------------------------------------
    candidates: list[TreeNode] = []
    for node in ordered:
        parent = nodes.get(node.parent_id) if node.parent_id else None
        if parent is None or parent is node:
            candidates.append(node)
        else:
            parent.children.append(node)

    if not candidates:
        return ActivityTree(session_id=session.id)

    # -- Root selection --------------------------------------------------------
    task_candidates = [n for n in candidates if n.event_type.startswith(EventCategory.TASK + "_")]
    if task_candidates:
        root = task_candidates[0]
        orphans = [n for n in candidates if n is not root]
    else:
        root = _synthetic_root(session, candidates)
        orphans = []

    # -- Pass 3: depth limit ---------------------------------------------------
    if max_depth is not None:
        _limit_depth([root, *orphans], max_depth)

    return ActivityTree(session_id=session.id, root=root, orphans=orphans)


def _unfinished_with_ancestors(events: Sequence[StoredEvent]) -> set[str]:
    """Ids of non-successful events plus every retained ancestor they hang from."""
    by_id = {e.id: e for e in events}
    kept: set[str] = set()
    for event in events:
        if event.status == EventStatus.SUCCESS:
            continue
        current: StoredEvent | None = event
        while current is not None and current.id not in kept:
            kept.add(current.id)
            current = by_id.get(current.parent_id) if current.parent_id else None
    return kept


def _node_from(event: StoredEvent) -> TreeNode:
    return TreeNode(
        id=event.id,
        event_type=event.event_type.value,
        name=event.name,
        description=event.description,
        status=event.status.value,
        timestamp=event.timestamp,
        duration_ms=event.duration_ms,
        parent_id=event.parent_id,
        correlation_id=event.correlation_id,
        details=event.details,
        display_info=event.display_info,
    )


def _synthetic_root(session: Session, children: list[TreeNode]) -> TreeNode:
    return TreeNode(
        id=SYNTHETIC_ROOT_ID,
        event_type=EventType.TASK_STARTED.value,
        name=session.root_task,
        description=session.root_task,
        status=session.status.value,
        timestamp=session.created_at,
        duration_ms=session.metrics.total_duration_ms or None,
        children=children,
    )


def _limit_depth(tops: list[TreeNode], max_depth: int) -> None:
    """Drop children of every node at depth ``max_depth`` (tops are depth 0)."""
    stack = [(node, 0) for node in tops]
    seen: set[int] = set()
    while stack:
        node, depth = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        if depth >= max_depth:
            node.children = []
            continue
        stack.extend((child, depth + 1) for child in node.children)
