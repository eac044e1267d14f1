"""Tests for the service facade: end-to-end flows across the core components."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from lookout.server.errors import ServiceError
from lookout.server.models.enums import ErrorKind, HealthState, OutputFormat, SessionStatus
from lookout.server.models.events import EventFilter
from lookout.server.models.health import DetailedHealthReport
from lookout.server.models.session import DisplaySettings
from lookout.server.models.stream import StreamOptions
from lookout.server.service import ObservabilityService
from lookout.server.settings import LookoutSettings


async def test_s1_tree_scenario(service, make_raw) -> None:
    first = await service.add_event(make_raw("s1", "task_started", "started", details={"name": "T"}))
    await service.add_event(
        make_raw("s1", "tool_pre_call", "started", parent_id=first.id, details={"name": "file_read"})
    )

    tree = await service.build_activity_tree("s1")

    assert tree.root.name == "T"
    assert [child.name for child in tree.root.children] == ["file_read"]


async def test_s2_expiry_scenario(service, make_raw, clock) -> None:
    await service.create_session("s2")
    await service.add_event(make_raw("s2", "task_started"))

    clock.advance(hours=24, milliseconds=1)
    assert service.expire_sessions() == ["s2"]

    assert await service.get_session_events("s2") == []
    with pytest.raises(ServiceError) as excinfo:
        await service.get_session("s2")
    assert excinfo.value.kind is ErrorKind.NOT_FOUND


async def test_invalid_event_is_rejected_without_retry(service, make_raw, sleeps) -> None:
    with pytest.raises(ServiceError) as excinfo:
        await service.add_event(make_raw(event_type="bogus"))

    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert sleeps.delays == []
    assert service.store.list_sessions() == []


async def test_add_event_records_health(service, make_raw) -> None:
    await service.add_event(make_raw())
    report = service.monitor.get_detailed_metrics()
    assert report.events.total == 1
    assert report.method_breakdown["log_event"].count == 1


async def test_events_are_broadcast_to_streams(service, make_raw) -> None:
    received = []
    await service.start_stream("s1", sink=received.append)

    stored = await service.add_event(make_raw("s1"))

    assert [o.event.id for o in received] == [stored.id]


async def test_start_stream_creates_session(service) -> None:
    stream_id = await service.start_stream("fresh")
    info = await service.get_stream_info(stream_id)
    assert info.session_id == "fresh"
    assert (await service.get_session("fresh")).status is SessionStatus.ACTIVE


async def test_stream_options_default_from_display_settings(service) -> None:
    await service.create_session("s1")
    await service.configure_display(
        "s1",
        DisplaySettings(show_timings=False, collapse_fast_ops=True, threshold_slow_ms=50, highlight_errors=False),
    )

    stream_id = await service.start_stream("s1", StreamOptions(output_format=OutputFormat.PLAIN, show_timings=True))
    options = (await service.get_stream_info(stream_id)).options

    assert options.output_format is OutputFormat.PLAIN
    assert options.show_timings is True
    assert options.collapse_completed is True
    assert options.slow_threshold_ms == 50
    assert options.highlight_errors is False


async def test_tree_depth_defaults_to_display_settings(service, make_raw) -> None:
    parent = await service.add_event(make_raw("s1", details={"name": "T"}))
    for i in range(4):
        parent = await service.add_event(make_raw("s1", "subagent_spawn", parent_id=parent.id, details={"name": f"d{i}"}))

    await service.configure_display("s1", DisplaySettings(max_tree_depth=2))
    tree = await service.build_activity_tree("s1")
    assert max(depth for _, depth in tree.iter_nodes()) == 2

    unbounded = await service.build_activity_tree("s1", max_depth=10)
    assert max(depth for _, depth in unbounded.iter_nodes()) == 4


async def test_stop_stream(service) -> None:
    stream_id = await service.start_stream("s1", sink=lambda _o: None)
    info = await service.stop_stream(stream_id)
    assert info.is_active is False
    again = await service.stop_stream(stream_id)
    assert again.stopped_at == info.stopped_at


async def test_unknown_ids_are_not_found(service) -> None:
    for call in (
        service.get_session("nope"),
        service.build_activity_tree("nope"),
        service.export_session("nope", "json"),
        service.get_stream_info("nope"),
        service.stop_stream("nope"),
        service.configure_display("nope", DisplaySettings()),
    ):
        with pytest.raises(ServiceError) as excinfo:
            await call
        assert excinfo.value.kind is ErrorKind.NOT_FOUND


async def test_export_round_trip(service, make_raw) -> None:
    task = await service.add_event(make_raw("s1", details={"name": "T"}))
    await service.add_event(make_raw("s1", "tool_post_call", "success", parent_id=task.id, details={"name": "read"}))

    data = json.loads(await service.export_session("s1", "json"))
    events = await service.get_session_events("s1")
    assert [e["id"] for e in data["events"]] == [e.id for e in events]

    tree_text = await service.export_session("s1", "tree")
    assert tree_text.splitlines() == ["T [started]", "  read [success]"]


async def test_bad_export_format(service) -> None:
    await service.create_session("s1")
    with pytest.raises(ServiceError) as excinfo:
        await service.export_session("s1", "xml")
    assert excinfo.value.kind is ErrorKind.VALIDATION


async def test_list_sessions(service, make_raw) -> None:
    await service.add_event(make_raw("s1"))
    await service.add_event(make_raw("s1", "task_progress", "running"))
    await service.create_session("s2", "Other")

    summaries = {s.session_id: s for s in await service.list_sessions()}
    assert summaries["s1"].event_count == 2
    assert summaries["s2"].root_task == "Other"


async def test_filtered_events(service, make_raw) -> None:
    for _ in range(5):
        await service.add_event(make_raw("s1", "task_progress", "running"))
    events = await service.get_session_events("s1", EventFilter(limit=2))
    assert len(events) == 2


async def test_create_session_rejects_blank_id(service) -> None:
    with pytest.raises(ServiceError) as excinfo:
        await service.create_session("  ")
    assert excinfo.value.kind is ErrorKind.VALIDATION


async def test_health_status(service, make_raw) -> None:
    await service.add_event(make_raw("s1"))
    basic = await service.get_health_status()
    assert basic.status is HealthState.HEALTHY
    assert basic.sessions.active == 1

    detailed = await service.get_health_status(detailed=True)
    assert isinstance(detailed, DetailedHealthReport)
    assert set(detailed.components) == {"store", "streams", "errors"}
    assert detailed.components["store"]["total_events"] == 1


async def test_cleanup_streams(service, clock) -> None:
    stream_id = await service.start_stream("s1", sink=lambda _o: None)
    await service.stop_stream(stream_id)
    clock.advance(hours=1, seconds=1)
    assert service.cleanup_streams() == 1


async def test_shutdown_stops_streams(service) -> None:
    first = await service.start_stream("s1", sink=lambda _o: None)
    second = await service.start_stream("s2", sink=lambda _o: None)
    assert service.shutdown() == 2
    for stream_id in (first, second):
        assert (await service.get_stream_info(stream_id)).is_active is False


def test_from_settings() -> None:
    settings = LookoutSettings(max_events_per_session=3, environment="production", slow_threshold_ms=100)
    service = ObservabilityService.from_settings(settings)
    assert service.policy.production is True
    assert service.store.stats()["total_sessions"] == 0


async def test_from_settings_applies_history_cap(make_raw) -> None:
    service = ObservabilityService.from_settings(LookoutSettings(max_events_per_session=3))
    for _ in range(5):
        await service.add_event(make_raw("s1", "task_progress", "running"))
    assert len(await service.get_session_events("s1")) == 3


def test_session_timeout_setting() -> None:
    assert LookoutSettings(session_timeout_seconds=60).session_timeout == timedelta(minutes=1)


async def test_stored_event_round_trips_through_add_event(service, make_raw) -> None:
    stored = await service.add_event(make_raw("s1", details={"name": "T"}))

    again = await service.add_event(stored)

    assert again.id != stored.id
    assert (again.event_type, again.status, again.details) == (stored.event_type, stored.status, stored.details)
    assert len(await service.get_session_events("s1")) == 2
