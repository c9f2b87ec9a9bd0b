"""SQL for the change-notification triggers.

Learn: PostgreSQL rejects a NOTIFY payload of 8000 bytes or more, and the
error aborts the INSERT/UPDATE that fired the trigger. So the payload is
kept small on three levels:

1. Slim snapshots: only SNAPSHOT_COLUMNS travel, never the whole row.
2. Free text (message content, notification body) is clipped by bytes,
   not characters, via servicehub_clip().
3. A final size guard: if the payload is still too big, it is rebuilt
   from the key fields alone (id, owner columns, status).

Each watched table gets its own trigger function, generated from the
column lists below, so the migration and the tests read the same SQL.
"""

from servicehub.events.types import ALL_STREAMS, OWNER_COLUMNS, SNAPSHOT_COLUMNS

NOTIFY_CHANNEL = "servicehub_changes"

# PostgreSQL's limit is "less than 8000 bytes"; leave room for the envelope
NOTIFY_MAX_BYTES = 7900

CLIPPED_COLUMNS = {"content": 1000, "message": 1000}

CLIP_FUNCTION_SQL = """
    CREATE OR REPLACE FUNCTION servicehub_clip(value text, max_bytes integer)
    RETURNS text AS $$
    DECLARE
        n integer;
    BEGIN
        IF value IS NULL OR octet_length(value) <= max_bytes THEN
            RETURN value;
        END IF;
        n := LEAST(char_length(value), max_bytes);
        WHILE octet_length(left(value, n)) > max_bytes LOOP
            n := n - GREATEST(1, (octet_length(left(value, n)) - max_bytes) / 4);
        END LOOP;
        RETURN left(value, n);
    END;
    $$ LANGUAGE plpgsql IMMUTABLE;
"""


def function_name(table: str) -> str:
    return f"servicehub_notify_{table}"


def trigger_name(table: str) -> str:
    return f"{table}_change_notify"


def key_columns(table: str) -> tuple[str, ...]:
    """The fallback snapshot: enough to route the event and spot a status change."""
    columns = ("id",) + OWNER_COLUMNS.get(table, ())
    if "status" in SNAPSHOT_COLUMNS[table]:
        columns += ("status",)
    return columns


def snapshot_sql(table: str, row: str, columns=None) -> str:
    """``jsonb_build_object(...)`` over ``columns`` of ``row`` (OLD or NEW)."""
    parts = []
    for column in columns or SNAPSHOT_COLUMNS[table]:
        value = f"{row}.{column}"
        if column in CLIPPED_COLUMNS:
            value = f"servicehub_clip({value}, {CLIPPED_COLUMNS[column]})"
        parts.append(f"'{column}', {value}")
    return f"jsonb_build_object({', '.join(parts)})"


def notify_function_sql(table: str) -> str:
    keys = key_columns(table)
    return f"""
    CREATE OR REPLACE FUNCTION {function_name(table)}()
    RETURNS TRIGGER AS $$
    DECLARE
        old_row jsonb := NULL;
        new_row jsonb := NULL;
        old_keys jsonb := NULL;
        new_keys jsonb := NULL;
        payload text;
    BEGIN
        IF TG_OP IN ('UPDATE', 'DELETE') THEN
            old_row := {snapshot_sql(table, "OLD")};
            old_keys := {snapshot_sql(table, "OLD", keys)};
        END IF;
        IF TG_OP IN ('INSERT', 'UPDATE') THEN
            new_row := {snapshot_sql(table, "NEW")};
            new_keys := {snapshot_sql(table, "NEW", keys)};
        END IF;

        payload := json_build_object(
            'stream', TG_TABLE_NAME, 'operation', TG_OP, 'old', old_row, 'new', new_row
        )::text;
        IF octet_length(payload) >= {NOTIFY_MAX_BYTES} THEN
            payload := json_build_object(
                'stream', TG_TABLE_NAME, 'operation', TG_OP, 'old', old_keys, 'new', new_keys
            )::text;
        END IF;

        PERFORM pg_notify('{NOTIFY_CHANNEL}', payload);
        RETURN COALESCE(NEW, OLD);
    END;
    $$ LANGUAGE plpgsql;
    """


def create_trigger_sql(table: str) -> str:
    return f"""
    CREATE TRIGGER {trigger_name(table)}
        AFTER INSERT OR UPDATE OR DELETE ON {table}
        FOR EACH ROW
        EXECUTE FUNCTION {function_name(table)}();
    """


def upgrade_statements(tables=ALL_STREAMS) -> list[str]:
    statements = [CLIP_FUNCTION_SQL]
    for table in tables:
        statements.append(notify_function_sql(table))
        statements.append(create_trigger_sql(table))
    return statements


def downgrade_statements(tables=ALL_STREAMS) -> list[str]:
    statements = []
    for table in tables:
        statements.append(f"DROP TRIGGER IF EXISTS {trigger_name(table)} ON {table};")
        statements.append(f"DROP FUNCTION IF EXISTS {function_name(table)}();")
    statements.append("DROP FUNCTION IF EXISTS servicehub_clip(text, integer);")
    return statements
