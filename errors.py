"""
Exception types shared across the package.

Input errors subclass ``ValueError`` so callers that only care about "bad
input" can catch that.
"""


class WorkbookParseError(ValueError):
    """The uploaded bytes could not be read as a workbook."""


class UnsupportedFileError(ValueError):
    """The upload has a file type or size we do not accept."""


class InvalidReferenceError(ValueError):
    """A cell, column or range reference could not be parsed."""


class ProviderNotConfiguredError(RuntimeError):
    """The selected AI provider has no API key in the environment."""
