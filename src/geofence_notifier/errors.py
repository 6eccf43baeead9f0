"""Exception hierarchy for the notification pipeline.

``ValidationError`` and ``NotFoundError`` are terminal for an event and are
recovered by the pipeline.  ``TransportError`` is retriable and always
propagates to the hosting trigger.
"""

from __future__ import annotations

from typing import Optional


class NotifierError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(NotifierError):
    """A transition record failed structural validation.

    Parameters
    ----------
    code:
        Machine-readable failure class (e.g. ``missing_fields``).
    message:
        Human-readable description.
    raw_payload:
        Excerpt of the offending record, already truncated.
    """

    def __init__(self, code: str, message: str, raw_payload: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.raw_payload = raw_payload


class NotFoundError(NotifierError):
    """A referenced document does not exist."""

    def __init__(self, kind: str, doc_id: str) -> None:
        super().__init__(f"{kind} not found: {doc_id}")
        self.kind = kind
        self.doc_id = doc_id


class TransportError(NotifierError):
    """The document store or push provider is unreachable or timed out."""

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation
