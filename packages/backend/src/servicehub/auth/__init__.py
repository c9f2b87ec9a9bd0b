"""Authentication — session tokens issued by the marketplace auth service.

Learn: This backend never logs anyone in. It only verifies the JWT the
auth service issued (shared HS256 secret) and reads two claims:
- sub: the user id every owner filter is keyed on
- roles: capability list; "admin" unlocks the admin alert feed
"""
