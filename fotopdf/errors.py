"""
errors.py - Exceptions raised at the session and input boundaries.

Pipelines do not raise these for per-item problems; those end up on the
result objects instead.
"""


class FotoPdfError(Exception):
    """Base class for fotopdf errors."""


class InvalidFileTypeError(FotoPdfError):
    """A file of the wrong type was offered to an operation."""


class ImageDecodeError(FotoPdfError):
    """Image bytes could not be decoded."""


class OperationInProgressError(FotoPdfError):
    """The same operation was started again before the first one finished."""

    def __init__(self, operation: str):
        super().__init__(f"{operation} is already in progress")
        self.operation = operation


class ResultReleasedError(FotoPdfError):
    """A result buffer was read after it had been released."""
