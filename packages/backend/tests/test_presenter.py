"""Notification presenter + permission gate tests."""

import pytest

from servicehub.events import types as ev
from servicehub.realtime.presenter import PermissionState
from servicehub.realtime.types import Action, Category


def _message(name="Alice"):
    return Action(
        ev.MESSAGE_RECEIVED,
        Category.MESSAGE,
        "messages",
        record={"content": "Are you free Tuesday?"},
        actor_id="a1",
        actor_name=name,
    )


@pytest.mark.asyncio
async def test_message_toast(presenter, sink):
    toast = await presenter.present(_message())
    assert toast.title == "New message"
    assert toast.body == "From Alice: Are you free Tuesday?"
    assert toast.link == "/messages"
    assert toast.duration_ms == 5000
    assert [f["type"] for f in sink.frames] == ["toast"]


@pytest.mark.asyncio
async def test_native_notification_only_when_granted(presenter, gate, sink):
    await presenter.present(_message())
    assert sink.of_type("native_notification") == []

    await gate.update("granted")
    await presenter.present(_message())
    native = sink.of_type("native_notification")
    assert len(native) == 1
    assert native[0]["body"] == "From Alice"


@pytest.mark.asyncio
async def test_status_toast_uses_labels(presenter):
    action = Action(
        ev.REQUEST_STATUS_CHANGED,
        Category.REQUEST,
        "service_requests",
        record={"title": "Paint fence"},
        old_status="pending",
        new_status="in_progress",
    )
    toast = await presenter.present(action)
    assert toast.body == 'Request "Paint fence" is now: In progress'


@pytest.mark.asyncio
async def test_missing_actor_name_uses_placeholder(presenter):
    toast = await presenter.present(_message(name=None))
    assert toast.body.startswith("From unknown user:")


@pytest.mark.asyncio
async def test_silent_kind_sends_nothing(presenter, sink):
    action = Action(ev.MESSAGES_CHANGED, Category.MESSAGE, "messages")
    assert await presenter.present(action) is None
    assert sink.frames == []


@pytest.mark.asyncio
async def test_permission_requested_once_when_default(gate, sink):
    await gate.update("default")
    await gate.update("default")
    assert len(sink.of_type("permission.request")) == 1
    assert gate.requested is True


@pytest.mark.asyncio
async def test_permission_not_requested_when_decided(gate, sink):
    await gate.update("denied")
    assert await gate.request_once() is False
    assert sink.frames == []
    assert gate.state is PermissionState.DENIED


@pytest.mark.asyncio
async def test_unknown_permission_state_ignored(gate, sink):
    await gate.update("maybe")
    assert gate.state is None
    assert sink.frames == []
