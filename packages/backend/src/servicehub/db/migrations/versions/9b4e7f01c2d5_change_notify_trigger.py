"""change notify trigger

Learn: Every watched table gets an AFTER INSERT/UPDATE/DELETE trigger that
sends {stream, operation, old, new} to the 'servicehub_changes' NOTIFY
channel. The relay process LISTENs there and fans the events out to
Redis, where each open view holds its subscriptions.

The SQL is generated by servicehub.db.notify: slim snapshots, free text
clipped by bytes, and a size guard so an oversized row can never make
pg_notify fail the user's write.

Revision ID: 9b4e7f01c2d5
Revises: 3f1c2a9d7b10
Create Date: 2026-09-28 11:40:51.602317
"""
from typing import Sequence, Union

from alembic import op

from servicehub.db.notify import downgrade_statements, upgrade_statements


# revision identifiers, used by Alembic.
revision: str = '9b4e7f01c2d5'
down_revision: Union[str, None] = '3f1c2a9d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

WATCHED_TABLES = (
    "messages",
    "service_requests",
    "documents",
    "profiles",
    "payments",
    "notifications",
)


def upgrade() -> None:
    for statement in upgrade_statements(WATCHED_TABLES):
        op.execute(statement)


def downgrade() -> None:
    for statement in downgrade_statements(WATCHED_TABLES):
        op.execute(statement)
