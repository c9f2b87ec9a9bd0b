"""Change feed helpers and payload parsing."""

import pytest

from conftest import USER_ID, insert, update
from servicehub.realtime.feed import FeedSubscription, channel_name, wants
from servicehub.realtime.types import ChangeEvent, Operation, RowFilter


def test_channel_names():
    assert channel_name("documents") == "servicehub:changes:documents"
    assert (
        channel_name("documents", RowFilter("user_id", USER_ID))
        == f"servicehub:changes:documents:user_id={USER_ID}"
    )


def test_wants_wildcard_and_explicit():
    event = update("documents", {"status": "pending"}, {"status": "approved"})
    assert wants({Operation.ALL}, event)
    assert wants({Operation.INSERT, Operation.UPDATE}, event)
    assert not wants({Operation.INSERT}, event)


def test_payload_shape_from_trigger():
    event = ChangeEvent.from_payload({
        "stream": "messages",
        "operation": "DELETE",
        "old": {"id": "m1", "content": "bye"},
        "new": None,
    })
    assert event.operation is Operation.DELETE
    assert event.record == {"id": "m1", "content": "bye"}
    assert event.to_payload()["old"] == {"id": "m1", "content": "bye"}


def test_unknown_operation_rejected():
    with pytest.raises(ValueError):
        ChangeEvent.from_payload({"stream": "messages", "operation": "TRUNCATE"})


def test_deliver_survives_callback_error():
    def explode(event):
        raise RuntimeError("consumer bug")

    sub = FeedSubscription("profiles", "servicehub:changes:profiles", frozenset({Operation.ALL}), explode)
    sub.deliver(insert("profiles", id="p1"))
