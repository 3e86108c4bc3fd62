from __future__ import annotations


class DatapipeError(Exception):
    """Base class for all datapipe errors."""


class ConfigError(DatapipeError):
    """Invalid construction parameters or environment configuration."""


class LoadError(DatapipeError):
    """A destination write, commit or statement build failed."""


class DecodeError(LoadError):
    """A raw byte value could not be coerced to the destination column type."""


class MetadataError(DatapipeError):
    """The destination catalog lookup failed."""


class VerificationError(LoadError):
    """The destination row count does not match the number of rows loaded."""
