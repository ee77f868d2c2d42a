"""Edit-in-place sessions for money records."""

from finance_tracker.editing.session import EditSession, EditSessionStateError

__all__ = ["EditSession", "EditSessionStateError"]
