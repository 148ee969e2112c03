"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types in the system.
"""

# Topic every state change is published on
ACTIVITY_TOPIC = "activity"

# ─── Users ───────────────────────────────────────────────

USER_REGISTERED = "user.registered"
USER_PASSWORD_CHANGED = "user.password_changed"

# ─── Places ──────────────────────────────────────────────

PLACE_CREATED = "place.created"
PLACE_UPDATED = "place.updated"
PLACE_DELETED = "place.deleted"

# ─── Comments ────────────────────────────────────────────

COMMENT_CREATED = "comment.created"
COMMENT_UPDATED = "comment.updated"
COMMENT_DELETED = "comment.deleted"
