"""Stream names and action kinds.

Learn: Centralizing these as constants prevents typos and makes it easy
to discover every stream the live layer listens to and every action it
can surface. A stream is one table's change feed; an action is what a
change means to the person looking at the screen.
"""

# ─── Streams (one per watched table) ─────────────────────

MESSAGES = "messages"
SERVICE_REQUESTS = "service_requests"
DOCUMENTS = "documents"
PROFILES = "profiles"
PAYMENTS = "payments"
NOTIFICATIONS = "notifications"

ALL_STREAMS = (
    MESSAGES,
    SERVICE_REQUESTS,
    DOCUMENTS,
    PROFILES,
    PAYMENTS,
    NOTIFICATIONS,
)

# Columns that scope a row to one person. The relay publishes each event
# on a per-owner channel for these, so filtered subscriptions are narrowed
# before anything reaches the view.
OWNER_COLUMNS = {
    MESSAGES: ("receiver_id", "sender_id"),
    SERVICE_REQUESTS: ("client_id", "worker_id"),
    DOCUMENTS: ("user_id",),
    NOTIFICATIONS: ("user_id",),
    PAYMENTS: ("client_id", "worker_id"),
    PROFILES: (),
}

# Columns the change trigger puts in each NOTIFY snapshot: the key, the
# owner columns, status, and whatever a toast reads. Long free text
# (descriptions, file URLs) never travels; the row is one query away.
SNAPSHOT_COLUMNS = {
    MESSAGES: ("id", "sender_id", "receiver_id", "content", "is_read", "created_at"),
    SERVICE_REQUESTS: ("id", "client_id", "worker_id", "title", "status", "created_at"),
    DOCUMENTS: ("id", "user_id", "document_type", "status", "created_at"),
    PROFILES: ("id", "full_name", "account_type", "created_at"),
    PAYMENTS: ("id", "request_id", "client_id", "worker_id", "amount", "status", "created_at"),
    NOTIFICATIONS: ("id", "user_id", "title", "message", "is_read", "created_at"),
}

# ─── Messaging ───────────────────────────────────────────

MESSAGE_RECEIVED = "message.received"
MESSAGES_CHANGED = "messages.changed"
NOTIFICATION_CREATED = "notification.created"

# ─── Service requests ────────────────────────────────────

REQUEST_CREATED = "request.created"
REQUEST_ASSIGNED = "request.assigned"
REQUEST_STATUS_CHANGED = "request.status_changed"

# ─── Document review ─────────────────────────────────────

DOCUMENT_UPLOADED = "document.uploaded"
DOCUMENT_STATUS_CHANGED = "document.status_changed"

# ─── Accounts + payments ─────────────────────────────────

USER_REGISTERED = "user.registered"
PAYMENT_CREATED = "payment.created"
PAYMENT_COMPLETED = "payment.completed"
