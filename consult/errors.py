"""Errors surfaced by the consultation engine to its host."""


class ConsultValidationError(ValueError):
    """Raised by start() when the case or roster is incomplete. State is untouched."""


class ConsultStateError(RuntimeError):
    """Raised when an operation is not allowed in the current phase."""


class ConsultationAbandoned(Exception):
    """Raised inside an in-flight run whose state was replaced by reset()."""


class PromptTemplateError(ValueError):
    """Raised when a prompt template cannot be filled with the consultation's fields."""
