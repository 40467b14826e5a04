"""Phone (IVR) channel support.

Components:
- CallSession: Dataclass with the state of one in-progress call
- CallSessionStore: Postgres document-per-call session storage
"""

from src.ivr.session_store import CallSession, CallSessionStore

__all__ = ["CallSession", "CallSessionStore"]
