"""Event models and the validation gate.

``EventIn`` is what producers submit.  ``StoredEvent`` is the immutable record
kept by the store, with an id assigned at insertion time.  ``validate_event``
is the single gate in front of the store: it is pure and never raises.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from lookout.server.errors import ValidationError
from lookout.server.models.enums import EventCategory, EventStatus, EventType

# -- Payload caps ------------------------------------------------------------
# Bound adversarial payloads: the ``details`` mapping itself is level 1 and
# every nested mapping or list adds a level.

MAX_DETAILS_DEPTH = 3
MAX_KEYS_PER_LEVEL = 50
MAX_LIST_ITEMS = 100
MAX_KEY_LENGTH = 100

MAX_DISPLAY_NAME = 200
MAX_DISPLAY_DESCRIPTION = 1000
MAX_DISPLAY_KEY = 50


def _check_payload(value: Any, level: int, path: str) -> None:
    if isinstance(value, Mapping):
        if level > MAX_DETAILS_DEPTH:
            msg = f"{path} nested deeper than {MAX_DETAILS_DEPTH} levels"
            raise ValueError(msg)
        if len(value) > MAX_KEYS_PER_LEVEL:
            msg = f"{path} has {len(value)} keys (max {MAX_KEYS_PER_LEVEL})"
            raise ValueError(msg)
        for key, item in value.items():
            if not isinstance(key, str):
                msg = f"{path} has a non-string key"
                raise ValueError(msg)
            if len(key) > MAX_KEY_LENGTH:
                msg = f"{path} has a key longer than {MAX_KEY_LENGTH} characters"
                raise ValueError(msg)
            _check_payload(item, level + 1, f"{path}.{key}")
    elif isinstance(value, list | tuple):
        if level > MAX_DETAILS_DEPTH:
            msg = f"{path} nested deeper than {MAX_DETAILS_DEPTH} levels"
            raise ValueError(msg)
        if len(value) > MAX_LIST_ITEMS:
            msg = f"{path} has {len(value)} items (max {MAX_LIST_ITEMS})"
            raise ValueError(msg)
        for index, item in enumerate(value):
            _check_payload(item, level + 1, f"{path}[{index}]")


def _non_blank(value: str | None) -> str | None:
    if value is not None and not value.strip():
        msg = "identifier must not be empty"
        raise ValueError(msg)
    return value


# -- Models ------------------------------------------------------------------


class DisplayInfo(BaseModel):
    """Abstract presentation hint.  Rendering to glyphs/colours happens elsewhere."""

    name: str | None = Field(default=None, max_length=MAX_DISPLAY_NAME)
    description: str | None = Field(default=None, max_length=MAX_DISPLAY_DESCRIPTION)
    icon_key: str | None = Field(default=None, max_length=MAX_DISPLAY_KEY)
    color_key: str | None = Field(default=None, max_length=MAX_DISPLAY_KEY)
    indent_level: int = Field(default=0, ge=0, le=32)
    should_collapse: bool = False


class EventIn(BaseModel):
    """Event as submitted by a producer.

    Attributes
    ----------
    timestamp:
        Creation time.  ISO strings and epoch numbers are accepted; naive
        values are treated as UTC.
    parent_id:
        Stored id of another event in the same session.  Need not resolve.
    correlation_id:
        Opaque string linking a request to its eventual response.
    details:
        Free-form payload, bounded by the ``MAX_*`` caps above.
    """

    timestamp: datetime
    session_id: str = Field(min_length=1)
    event_type: EventType
    status: EventStatus
    duration_ms: float | None = Field(default=None, ge=0)
    parent_id: str | None = Field(default=None, min_length=1)
    correlation_id: str | None = Field(default=None, min_length=1)
    details: dict[str, Any] = Field(default_factory=dict)
    display_info: DisplayInfo | None = None

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @field_validator("session_id", "parent_id", "correlation_id")
    @classmethod
    def _reject_blank(cls, value: str | None) -> str | None:
        return _non_blank(value)

    @field_validator("details", mode="before")
    @classmethod
    def _cap_details(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            msg = "details must be a mapping"
            raise ValueError(msg)  # noqa: TRY004
        _check_payload(value, 1, "details")
        return value

    # -- Derived ---------------------------------------------------------------

    @property
    def category(self) -> EventCategory:
        return self.event_type.category

    @property
    def name(self) -> str:
        name = self.details.get("name")
        return str(name) if name else self.event_type.value

    @property
    def description(self) -> str:
        description = self.details.get("description")
        return str(description) if description else ""


class StoredEvent(EventIn):
    """Immutable stored record.  ``id`` is assigned by the store."""

    model_config = ConfigDict(frozen=True)

    id: str


class EventFilter(BaseModel):
    """Selection applied by ``get_session_events``.  Unset fields match everything."""

    event_types: set[EventType] | None = None
    status: EventStatus | None = None
    since: datetime | None = None
    limit: int | None = Field(default=None, ge=1)

    @field_validator("since")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# -- Gate --------------------------------------------------------------------


def parse_event(raw: Any) -> EventIn:
    """Validate *raw* into an ``EventIn``.  Raises ``ValidationError``."""
    if isinstance(raw, EventIn):
        return raw
    if not isinstance(raw, Mapping):
        msg = "Event must be an object"
        raise ValidationError(msg)
    try:
        return EventIn.model_validate(raw)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'event'}: {err['msg']}" for err in exc.errors()
        )
        msg = f"Invalid event: {problems}"
        raise ValidationError(msg) from None


def validate_event(raw: Any) -> bool:
    """Return whether *raw* would pass the gate.  Pure, never raises."""
    try:
        parse_event(raw)
    except ValidationError:
        return False
    return True


def new_event(
    session_id: str,
    event_type: EventType | str,
    *,
    status: EventStatus | str = EventStatus.STARTED,
    parent_id: str | None = None,
    correlation_id: str | None = None,
    duration_ms: float | None = None,
    details: dict[str, Any] | None = None,
    display_info: DisplayInfo | None = None,
) -> EventIn:
    """Build an event stamped with the current time."""
    return EventIn(
        timestamp=datetime.now(UTC),
        session_id=session_id,
        event_type=EventType(event_type),
        status=EventStatus(status),
        duration_ms=duration_ms,
        parent_id=parent_id,
        correlation_id=correlation_id,
        details=details or {},
        display_info=display_info,
    )
