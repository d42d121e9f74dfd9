"""Domain exceptions, grouped by how callers are expected to react to them."""

from typing import Optional


class GroundworkError(Exception):
    """Base class for all domain errors."""


# ---------------------------------------------------------------------------
# Integrity errors: caller-retriable, never resolved server-side
# ---------------------------------------------------------------------------

class VersionConflict(GroundworkError):
    """A concurrent append already produced this (user, entry_id, version)."""

    def __init__(self, entry_id: str, attempted_version: int):
        self.entry_id = entry_id
        self.attempted_version = attempted_version
        super().__init__(
            f"Version {attempted_version} of entry {entry_id} already exists; "
            "re-read the current version and retry"
        )


class SnapshotVersionConflict(GroundworkError):
    """A concurrent compile already claimed this snapshot version."""

    def __init__(self, user_id: int, attempted_version: int):
        self.user_id = user_id
        self.attempted_version = attempted_version
        super().__init__(f"Snapshot version {attempted_version} already exists for user {user_id}")


class EmptyContext(GroundworkError):
    """Nothing left to compile after tombstones and persona filtering."""

    def __init__(self, user_id: int, persona_id: Optional[int] = None):
        self.user_id = user_id
        self.persona_id = persona_id
        detail = f" with persona {persona_id}" if persona_id is not None else ""
        super().__init__(f"No context entries remain for user {user_id}{detail}")


class NotFound(GroundworkError):
    """Entity lookup failed (also raised by blob stores for missing keys)."""


# ---------------------------------------------------------------------------
# Grounding errors: absorbed by the resume compiler, recorded as rejections
# ---------------------------------------------------------------------------

class UngroundedReference(GroundworkError):
    """A candidate bullet cites an entry outside the compiled snapshot."""

    def __init__(self, source_entry_id: str):
        self.source_entry_id = source_entry_id
        super().__init__(f"Bullet cites entry {source_entry_id}, which is not in the snapshot")


# ---------------------------------------------------------------------------
# Collaborator / transport errors: retried with backoff, then surfaced
# ---------------------------------------------------------------------------

class GenerationUnavailable(GroundworkError):
    """The generation collaborator could not be reached or refused the call."""


class MalformedOutput(GroundworkError):
    """The generation collaborator returned output that does not match the bullet schema."""

    def __init__(self, message: str, raw: Optional[str] = None):
        self.raw = raw
        super().__init__(message)


class StorageError(GroundworkError):
    """Blob store write/read failed for a reason other than a missing key."""


# ---------------------------------------------------------------------------
# Render errors: terminal for the render job that hit them
# ---------------------------------------------------------------------------

class CompileError(GroundworkError):
    """The typesetting engine rejected the LaTeX source."""

    def __init__(self, detail: str, errors: Optional[list] = None):
        self.detail = detail
        self.errors = errors or []
        super().__init__(detail)


class RetriesExhausted(GroundworkError):
    """A render job's lease expired more times than the configured maximum."""

    def __init__(self, job_id: str, attempts: int, last_error: Optional[str] = None):
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
        if last_error:
            message = f"Render job {job_id} exhausted {attempts} attempts; last error: {last_error}"
        else:
            message = f"Render job {job_id} exhausted {attempts} attempts without reporting"
        super().__init__(message)


class InvalidTransition(GroundworkError):
    """A render job transition was requested from a state that does not allow it."""

    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Render job {job_id} cannot move from {current} to {target}")
