"""Warnings and errors raised by the run-length texture engine."""


class InvalidInputParametersError(ValueError):
    """Raised when a texture parameter (range, bins, offset, radius, threads) is invalid."""


class DataStructureWarning(UserWarning):
    """Issued when the input image or mask is usable but suspicious."""


class DataStructureError(Exception):
    """Raised when the input image or mask cannot be processed."""
