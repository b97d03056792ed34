from __future__ import annotations


class MentorError(Exception):
    """Base class for ledger errors surfaced to callers."""


class InvalidTransition(MentorError):
    """The requested state change is not allowed from the current state."""


class MissingRequiredField(InvalidTransition):
    """A transition needs a field the caller has not supplied yet."""

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"'{field}' is required for this transition")
        self.field = field


class UnknownEntity(MentorError):
    """A referenced record does not exist."""

    def __init__(self, label: str, entity_id: str):
        super().__init__(f"{label} {entity_id!r} not found")
        self.label = label
        self.entity_id = entity_id


class DuplicateClientError(MentorError):
    """A deal's deterministic mentee key is held by a record not linked to that deal."""
