"""Exceptions raised by PDF Shrink."""

from typing import Optional


class PDFShrinkError(Exception):
    """Base class for all PDF Shrink errors."""


class DocumentError(PDFShrinkError):
    """The input could not be loaded as a document."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class InvalidArgumentError(PDFShrinkError, ValueError):
    """A caller supplied an argument outside the accepted range."""
