"""Error taxonomy for the live layer.

Learn: Only PreconditionError is fatal, and only for the component that
raised it. SubscriptionError degrades a view to periodic refetching;
QueryError keeps the last known-good value on screen. Enrichment misses
are not errors at all — they fall back to a placeholder label.
"""


class RealtimeError(Exception):
    """Base class for live-layer failures."""


class SubscriptionError(RealtimeError):
    """A channel could not be established, or the server dropped it."""

    def __init__(self, stream: str, reason: str):
        super().__init__(f"Subscription to '{stream}' failed: {reason}")
        self.stream = stream
        self.reason = reason


class DuplicateSubscriptionError(RealtimeError):
    """The view already holds a live handle for this (stream, filter)."""


class QueryError(RealtimeError):
    """A count, recompute, or lookup query against the store failed."""


class PreconditionError(RealtimeError):
    """The current identity may not activate this component.

    Not retried: the component simply never activates for this view.
    """
