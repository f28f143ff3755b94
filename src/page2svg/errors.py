"""Exceptions raised by the page2svg conversion pipeline."""

from __future__ import annotations


class ConversionError(RuntimeError):
    """Base class for failures that abort a whole conversion."""


class OracleError(ConversionError):
    """The typesetting oracle could not be run or returned unusable output."""


class OracleTimeoutError(OracleError):
    pass


class ImageExternalizationError(ConversionError):
    """An embedded image payload could not be decoded or written."""
