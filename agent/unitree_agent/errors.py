"""
Exception types raised inside the agent.

Signal loss is never an exception (it is a failed validation check).
These cover configuration, persistence, and sync problems only.
"""


class AgentError(Exception):
    """Base class for all agent errors."""


class ConfigError(AgentError):
    """Config file missing, unreadable, or lacking required keys."""


class PersistenceError(AgentError):
    """A local durable write or read failed."""


class SessionConflictError(PersistenceError):
    """Another active session already exists for the same user and device."""

    def __init__(self, existing):
        self.existing = existing
        super().__init__(
            f"active session {existing.id} already held for "
            f"{existing.user_id}/{existing.device_id}"
        )


class SyncError(AgentError):
    """Remote upload rejected or unreachable."""

    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)
