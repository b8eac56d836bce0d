"""Exceptions raised by countnorm.

Both concrete errors subclass ``ValueError`` so callers catching the
usual pandas/numpy error type keep working.
"""

from __future__ import annotations


class CountNormError(Exception):
    """Base class for countnorm errors."""


class DataShapeError(CountNormError, ValueError):
    """Raised when filtering leaves no genes or no samples."""


class ConfigError(CountNormError, ValueError):
    """Raised for invalid or contradictory configuration."""
