"""Exception hierarchy.

Conflicts (a slot taken between availability check and insert) are not
exceptions: they come back as ``BookingResult(success=False)`` so callers can
re-prompt. Everything here is either a caller mistake or a broken dependency.
"""

from __future__ import annotations


class ConnectSphereError(Exception):
    """Base class for all application errors."""


class ValidationError(ConnectSphereError):
    """Input rejected: malformed date/time, inverted schedule bounds, bad status."""


class DocumentNotFoundError(ConnectSphereError):
    """Update targeted a document that does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Document not found: {path}")
        self.path = path


class BatchLimitError(ConnectSphereError):
    """Write batch exceeded the store's operation limit."""


class KnowledgeUnavailableError(ConnectSphereError):
    """Embedding or vector-store credentials are missing or rejected."""
