"""Event-to-action mapper — what does this row change mean for this view?

Learn: map_event() is a pure function over a rule table keyed by
(stream, audience). Each rule lists the operations it cares about and
how to build the Action. Anything not in the table maps to None and is
dropped silently.

Status rule: for UPDATE events the mapper compares before.status with
after.status and only emits when they differ. Editing a request's title
or marking a message read never produces a status toast.

The mapper never does I/O. Display names are filled in afterwards by the
enrichment step (see enrichment.py), which can't fail the pipeline.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from servicehub.events import types as ev
from servicehub.realtime.types import (
    Action,
    Audience,
    Category,
    ChangeEvent,
    MappingContext,
    Operation,
)

Builder = Callable[[ChangeEvent, MappingContext], Optional[Action]]


@dataclass(frozen=True)
class Rule:
    """How one (stream, audience) pair turns events into actions."""

    operations: dict[Operation, Builder]


# ─── Builders ─────────────────────────────────────────────


def status_changed(event: ChangeEvent) -> bool:
    """True only when an UPDATE actually moved the row's status."""
    before = (event.before or {}).get("status")
    after = (event.after or {}).get("status")
    return before != after


def _simple(kind: str, category: Category, actor_column: Optional[str] = None) -> Builder:
    def build(event: ChangeEvent, ctx: MappingContext) -> Action:
        record = event.record
        return Action(
            kind=kind,
            category=category,
            stream=event.stream,
            record=record,
            new_status=record.get("status"),
            actor_id=_str_or_none(record.get(actor_column)) if actor_column else None,
        )

    return build


def _on_status_change(kind: str, category: Category) -> Builder:
    def build(event: ChangeEvent, ctx: MappingContext) -> Optional[Action]:
        if not status_changed(event):
            return None
        return Action(
            kind=kind,
            category=category,
            stream=event.stream,
            record=event.record,
            old_status=(event.before or {}).get("status"),
            new_status=(event.after or {}).get("status"),
        )

    return build


def _payment_completed(event: ChangeEvent, ctx: MappingContext) -> Optional[Action]:
    old = (event.before or {}).get("status")
    new = (event.after or {}).get("status")
    if new != "completed" or old == "completed":
        return None
    return Action(
        kind=ev.PAYMENT_COMPLETED,
        category=Category.PAYMENT,
        stream=event.stream,
        record=event.record,
        old_status=old,
        new_status=new,
    )


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)


# ─── Rule table ───────────────────────────────────────────

_REQUEST_STATUS = _on_status_change(ev.REQUEST_STATUS_CHANGED, Category.REQUEST)
_DOCUMENT_STATUS = _on_status_change(ev.DOCUMENT_STATUS_CHANGED, Category.DOCUMENT)
_MESSAGES_CHANGED = _simple(ev.MESSAGES_CHANGED, Category.MESSAGE)

RULES: dict[tuple[str, Audience], Rule] = {
    (ev.MESSAGES, Audience.INBOX): Rule({
        Operation.INSERT: _simple(ev.MESSAGE_RECEIVED, Category.MESSAGE, "sender_id"),
    }),
    (ev.MESSAGES, Audience.CONVERSATION): Rule({
        Operation.INSERT: _MESSAGES_CHANGED,
        Operation.UPDATE: _MESSAGES_CHANGED,
        Operation.DELETE: _MESSAGES_CHANGED,
    }),
    (ev.SERVICE_REQUESTS, Audience.CLIENT): Rule({
        Operation.UPDATE: _REQUEST_STATUS,
    }),
    (ev.SERVICE_REQUESTS, Audience.WORKER): Rule({
        Operation.INSERT: _simple(ev.REQUEST_ASSIGNED, Category.REQUEST, "client_id"),
        Operation.UPDATE: _REQUEST_STATUS,
    }),
    (ev.SERVICE_REQUESTS, Audience.ADMIN): Rule({
        Operation.INSERT: _simple(ev.REQUEST_CREATED, Category.REQUEST, "client_id"),
        Operation.UPDATE: _REQUEST_STATUS,
    }),
    (ev.DOCUMENTS, Audience.ADMIN): Rule({
        Operation.INSERT: _simple(ev.DOCUMENT_UPLOADED, Category.DOCUMENT, "user_id"),
        Operation.UPDATE: _DOCUMENT_STATUS,
    }),
    (ev.DOCUMENTS, Audience.INBOX): Rule({
        Operation.UPDATE: _DOCUMENT_STATUS,
    }),
    (ev.PROFILES, Audience.ADMIN): Rule({
        Operation.INSERT: _simple(ev.USER_REGISTERED, Category.USER),
    }),
    (ev.PAYMENTS, Audience.ADMIN): Rule({
        Operation.INSERT: _simple(ev.PAYMENT_CREATED, Category.PAYMENT),
        Operation.UPDATE: _payment_completed,
    }),
    (ev.NOTIFICATIONS, Audience.INBOX): Rule({
        Operation.INSERT: _simple(ev.NOTIFICATION_CREATED, Category.NOTIFICATION),
    }),
}


def relevant_operations(stream: str, audience: Audience) -> frozenset[Operation]:
    """Operations worth subscribing to for this (stream, audience)."""
    rule = RULES.get((stream, audience))
    return frozenset(rule.operations) if rule else frozenset()


def map_event(event: ChangeEvent, context: MappingContext) -> Optional[Action]:
    """Translate one change event into an Action for this view, or None."""
    rule = RULES.get((event.stream, context.audience))
    if rule is None:
        return None
    builder = rule.operations.get(event.operation)
    if builder is None:
        return None
    return builder(event, context)
