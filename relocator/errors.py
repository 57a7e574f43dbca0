"""Relocator-specific exceptions."""


class RelocatorError(Exception):
    """Base class for every error that aborts a move.

    Callers should print the message and exit non-zero.  Nothing has been
    written to disk when one of these escapes a transaction.
    """


class UnknownSymbolError(RelocatorError):
    """Raised when the root method, source class or target class cannot be found."""


class InvalidVisibilityError(RelocatorError, ValueError):
    """Raised when a field visibility policy string is not recognised."""


class MoveError(RelocatorError):
    """Raised when a move is refused or its output fails verification."""


class EditConflictError(RelocatorError):
    """Raised when two edits of one plan overlap or target an unknown file."""
