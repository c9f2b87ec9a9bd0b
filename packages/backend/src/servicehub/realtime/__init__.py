"""Live update layer — change feed subscriptions per open view.

Learn: Events flow through three hops:
1. PostgreSQL trigger → NOTIFY 'servicehub_changes' (one per row change)
2. Relay process → Redis PUBLISH on stream and per-owner channels
3. Redis SUBSCRIBE → registry handle → mapper → recompute / presenter → WebSocket

Every view (one WebSocket session) owns its own subscription scope, so
closing a tab tears down exactly the listeners that tab created.
"""
