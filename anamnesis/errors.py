"""Error taxonomy for anamnesis.

``ValidationError`` subclasses ``ValueError`` so the sanitizers in
:mod:`anamnesis.validation` can be caught either way.
"""


class AnamnesisError(Exception):
    """Base class for all anamnesis errors."""


class ValidationError(AnamnesisError, ValueError):
    """Input was empty or malformed. Never retried."""


class CollaboratorUnavailable(AnamnesisError):
    """An external collaborator (embedding provider, store) timed out or failed.

    Raised after the single retry has been spent.
    """

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class NotFound(AnamnesisError):
    """A referenced record does not exist."""


class ConsistencyConflict(AnamnesisError):
    """A relationship pointer names a record that was compressed away."""
