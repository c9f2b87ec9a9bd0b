"""Event-to-action mapper tests — pure, no fixtures needed."""

from conftest import ALICE_ID, USER_ID, delete, insert, update
from servicehub.events import types as ev
from servicehub.realtime.mapper import map_event, relevant_operations
from servicehub.realtime.types import Audience, Category, MappingContext, Operation

INBOX = MappingContext(user_id=USER_ID, audience=Audience.INBOX)
WORKER = MappingContext(user_id=USER_ID, audience=Audience.WORKER)
CLIENT = MappingContext(user_id=USER_ID, audience=Audience.CLIENT)
ADMIN = MappingContext(user_id=USER_ID, audience=Audience.ADMIN)
CONVERSATION = MappingContext(user_id=USER_ID, audience=Audience.CONVERSATION)


def _request(status: str, **extra) -> dict:
    return {"id": "r1", "title": "Fix sink", "client_id": ALICE_ID, "worker_id": USER_ID, "status": status, **extra}


def test_worker_status_change_maps_exactly_one_action():
    event = update("service_requests", _request("pending"), _request("accepted"))
    action = map_event(event, WORKER)
    assert action is not None
    assert action.kind == ev.REQUEST_STATUS_CHANGED
    assert action.category is Category.REQUEST
    assert action.old_status == "pending"
    assert action.new_status == "accepted"


def test_update_without_status_change_maps_nothing():
    event = update(
        "service_requests",
        _request("accepted", title="Fix sink"),
        _request("accepted", title="Fix kitchen sink"),
    )
    assert map_event(event, WORKER) is None
    assert map_event(event, CLIENT) is None
    assert map_event(event, ADMIN) is None


def test_document_update_same_status_is_silent():
    doc = {"id": "d1", "user_id": USER_ID, "document_type": "id_card", "status": "pending"}
    assert map_event(update("documents", doc, dict(doc)), INBOX) is None


def test_message_insert_for_inbox():
    event = insert("messages", id="m1", sender_id=ALICE_ID, receiver_id=USER_ID, content="hi")
    action = map_event(event, INBOX)
    assert action.kind == ev.MESSAGE_RECEIVED
    assert action.actor_id == ALICE_ID
    assert action.record["content"] == "hi"


def test_inbox_ignores_message_updates_and_deletes():
    row = {"id": "m1", "sender_id": ALICE_ID, "receiver_id": USER_ID, "is_read": False}
    assert map_event(update("messages", row, {**row, "is_read": True}), INBOX) is None
    assert map_event(delete("messages", **row), INBOX) is None


def test_conversation_audience_maps_every_operation():
    row = {"id": "m1", "sender_id": ALICE_ID, "receiver_id": USER_ID, "is_read": False}
    for event in (
        insert("messages", **row),
        update("messages", row, {**row, "is_read": True}),
        delete("messages", **row),
    ):
        assert map_event(event, CONVERSATION).kind == ev.MESSAGES_CHANGED


def test_new_request_for_worker_is_an_assignment():
    action = map_event(insert("service_requests", **_request("pending")), WORKER)
    assert action.kind == ev.REQUEST_ASSIGNED
    assert action.actor_id == ALICE_ID


def test_client_is_not_told_about_own_new_request():
    assert map_event(insert("service_requests", **_request("pending")), CLIENT) is None


def test_admin_sees_new_documents_and_users():
    doc = map_event(insert("documents", id="d1", user_id=ALICE_ID, status="pending"), ADMIN)
    assert doc.kind == ev.DOCUMENT_UPLOADED
    assert doc.category is Category.DOCUMENT
    assert doc.actor_id == ALICE_ID

    user = map_event(insert("profiles", id=ALICE_ID, full_name="Alice"), ADMIN)
    assert user.kind == ev.USER_REGISTERED
    assert user.actor_id is None


def test_payment_completed_only_on_transition():
    pending = {"id": "p1", "amount": 40, "status": "pending"}
    done = {**pending, "status": "completed"}
    assert map_event(update("payments", pending, done), ADMIN).kind == ev.PAYMENT_COMPLETED
    assert map_event(update("payments", done, {**done, "amount": 45}), ADMIN) is None
    assert map_event(update("payments", pending, {**pending, "status": "failed"}), ADMIN) is None


def test_unknown_stream_or_audience_maps_nothing():
    assert map_event(insert("payments", id="p1", amount=1), INBOX) is None
    assert map_event(insert("audit_log", id="a1"), ADMIN) is None


def test_relevant_operations():
    assert relevant_operations("messages", Audience.INBOX) == {Operation.INSERT}
    assert relevant_operations("service_requests", Audience.ADMIN) == {
        Operation.INSERT,
        Operation.UPDATE,
    }
    assert relevant_operations("documents", Audience.ADMIN) == {
        Operation.INSERT,
        Operation.UPDATE,
    }
    assert relevant_operations("profiles", Audience.ADMIN) == {Operation.INSERT}
    assert relevant_operations("payments", Audience.CLIENT) == frozenset()
