"""Exceptions raised by the extraction pipeline.

``ToolUnavailable`` and ``DirectoryUnwritable`` abort a run before any
document is touched. The others are isolated to one (document, target) pair
and counted in ``RunStats``.
"""

from __future__ import annotations


class ExtractOcrError(Exception):
    """Base class for pipeline errors."""


class ToolUnavailable(ExtractOcrError):
    """A required command-line converter is not installed."""


class DirectoryUnwritable(ExtractOcrError):
    """A destination directory cannot be created, read or written."""


class MissingSourceFile(ExtractOcrError):
    """The PDF of a media is missing from the file store."""


class ConversionError(ExtractOcrError):
    """A converter failed, returned nothing, or produced unusable output."""


class NoTextLayer(ExtractOcrError):
    """The PDF has no extractable text and empty artifacts are not wanted."""


class StorageError(ExtractOcrError):
    """An artifact or a property value could not be stored."""
