"""Domain error taxonomy.

Upstream capability failures (``LLMError``) are caught at component
boundaries and mapped to fallbacks.  Not-found and state-conflict errors
are raised only where the caller explicitly required existence or a
particular lifecycle state.
"""

from __future__ import annotations


class RoleRagError(Exception):
    """Base class for all domain errors."""

    error_code = "internal_error"


class LLMError(RoleRagError):
    """Raised by model adapters when a completion or embedding call fails."""

    error_code = "upstream_error"


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(RoleRagError):
    error_code = "not_found"


class SessionNotFoundError(NotFoundError):
    error_code = "session_not_found"


class CharacterNotFoundError(NotFoundError):
    error_code = "character_not_found"


class ProfileNotFoundError(NotFoundError):
    error_code = "profile_not_found"


class RecordNotFoundError(NotFoundError):
    error_code = "record_not_found"


# ---------------------------------------------------------------------------
# State conflicts
# ---------------------------------------------------------------------------


class StateConflictError(RoleRagError):
    error_code = "state_conflict"


class CharacterStateError(StateConflictError):
    error_code = "character_not_active"


class ProfileNotReadyError(StateConflictError):
    error_code = "profile_not_ready"


class ProfileGenerationInProgressError(StateConflictError):
    error_code = "profile_generation_in_progress"


class SessionStateError(StateConflictError):
    error_code = "session_not_active"
