# tests/test_status.py
"""
Tests for the status state machine, fan-out and expiry.
"""
import pytest

from devbox.core.exceptions import InvalidStatusTransition
from devbox.sandbox.status import ALLOWED_TRANSITIONS, STATUSES, can_transition


class TestTransitions:
    def test_unknown_project_is_stopped(self, registry):
        assert registry.status_of("nobody") == "stopped"
        assert registry.get_status("nobody") is None

    @pytest.mark.asyncio
    async def test_happy_path(self, registry):
        for status in ("creating", "syncing", "running", "stopped"):
            await registry.set_status("p", status, status)
        assert registry.status_of("p") == "stopped"

    @pytest.mark.asyncio
    async def test_invalid_edge_is_rejected(self, registry):
        with pytest.raises(InvalidStatusTransition) as info:
            await registry.set_status("p", "running")
        assert (info.value.current, info.value.requested) == ("stopped", "running")
        assert registry.get_status("p") is None

    @pytest.mark.asyncio
    async def test_self_loop_refreshes_message(self, registry):
        await registry.set_status("p", "creating", "pulling image")
        await registry.set_status("p", "creating", "starting")
        assert registry.get_status("p").message == "starting"

    @pytest.mark.asyncio
    async def test_unknown_status_value(self, registry):
        with pytest.raises(ValueError):
            await registry.set_status("p", "paused")

    def test_error_reachable_from_active_states(self):
        for state in ("creating", "syncing", "running"):
            assert can_transition(state, "error")
        assert not can_transition("stopped", "error")

    def test_table_covers_all_states(self):
        assert set(ALLOWED_TRANSITIONS) == set(STATUSES)
        for state, targets in ALLOWED_TRANSITIONS.items():
            assert state in targets


class TestFanOut:
    @pytest.mark.asyncio
    async def test_broken_subscriber_is_removed_others_receive(self, registry, make_channel):
        good_a, broken, good_b = make_channel(), make_channel(broken=True), make_channel()
        for channel in (good_a, good_b):
            await registry.subscribe("p", channel)
        registry._subscribers["p"].insert(1, broken)

        await registry.set_status("p", "creating", "go")

        assert good_a.types()[-1] == "container-status"
        assert good_b.types()[-1] == "container-status"
        assert broken.attempts == 1
        assert registry.connection_count("p") == 2

    @pytest.mark.asyncio
    async def test_subscribe_greets_with_connected_and_state(self, registry, make_channel):
        await registry.set_status("p", "creating", "go")
        channel = make_channel()

        await registry.subscribe("p", channel)

        assert channel.types() == ["connected", "project-state"]
        state = channel.events[1]["data"]["state"]
        assert state["containerStatus"] == "creating"

    @pytest.mark.asyncio
    async def test_subscribe_unknown_project_only_connected(self, registry, make_channel):
        channel = make_channel()
        await registry.subscribe("fresh", channel)
        assert channel.types() == ["connected"]

    @pytest.mark.asyncio
    async def test_subscriber_failing_on_connect_is_dropped(self, registry, make_channel):
        await registry.subscribe("p", make_channel(broken=True))
        assert registry.connection_count("p") == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, registry, make_channel):
        channel = make_channel()
        await registry.subscribe("p", channel)
        await registry.unsubscribe("p", channel)

        await registry.set_status("p", "creating")

        assert channel.types() == ["connected"]

    @pytest.mark.asyncio
    async def test_projects_are_isolated(self, registry, make_channel):
        a, b = make_channel(), make_channel()
        await registry.subscribe("a", a)
        await registry.subscribe("b", b)

        await registry.set_status("a", "creating")

        assert "container-status" in a.types()
        assert "container-status" not in b.types()

    @pytest.mark.asyncio
    async def test_event_shape(self, registry, make_channel, clock):
        channel = make_channel()
        await registry.subscribe("p", channel)
        await registry.set_status("p", "creating", "hello")

        event = channel.events[-1]
        assert event == {
            "type": "container-status",
            "data": {
                "projectId": "p",
                "timestamp": int(clock.now * 1000),
                "status": "creating",
                "message": "hello",
            },
        }

    @pytest.mark.asyncio
    async def test_record_file_and_preview_events(self, registry, make_channel):
        channel = make_channel()
        await registry.subscribe("p", channel)

        await registry.record_file("p", "index.js", "x")
        await registry.notify_preview("p", "http://localhost:30000")

        assert channel.types()[-2:] == ["file-updated", "preview-updated"]
        assert channel.events[-2]["data"]["filename"] == "index.js"
        assert channel.events[-1]["data"]["url"] == "http://localhost:30000"


class TestExpiry:
    @pytest.mark.asyncio
    async def test_sweep_purges_idle_records(self, registry, clock):
        await registry.set_status("old", "creating")
        clock.advance(23 * 3600)
        await registry.set_status("fresh", "creating")
        clock.advance(2 * 3600)

        expired = await registry.sweep()

        assert expired == ["old"]
        assert registry.get_status("old") is None
        assert registry.status_of("fresh") == "creating"

    @pytest.mark.asyncio
    async def test_activity_keeps_record_alive(self, registry, clock):
        await registry.set_status("p", "creating")
        clock.advance(20 * 3600)
        await registry.set_status("p", "running")
        clock.advance(20 * 3600)

        assert await registry.sweep() == []
