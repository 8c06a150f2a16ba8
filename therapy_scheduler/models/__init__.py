"""Database models."""

from therapy_scheduler.models.base import metadata
from therapy_scheduler.models.notifications import notifications
from therapy_scheduler.models.push_tokens import push_tokens
from therapy_scheduler.models.session_changes import session_changes
from therapy_scheduler.models.therapy_sessions import therapy_sessions
from therapy_scheduler.models.users import users

__all__ = [
    "metadata",
    "notifications",
    "push_tokens",
    "session_changes",
    "therapy_sessions",
    "users",
]
