"""Change relay — Postgres NOTIFY in, Redis channels out.

Learn: Runs as its own process (servicehub-relay), like any LISTEN
consumer should: if it dies the API keeps serving, and views fall back
to degraded polling until it's back.
"""
