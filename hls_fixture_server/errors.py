"""Exceptions raised by the HLS Fixture Server."""

from __future__ import annotations


class FixtureServerError(Exception):
    """Base class for all errors of the fixture server."""


class ParseError(FixtureServerError):
    """Raised when a playlist file does not have the expected shape."""


class FileReadError(FixtureServerError):
    """Raised when a fixture file is missing or unreadable."""


class WriteError(FixtureServerError):
    """Raised when the transport rejects a write (e.g. the client went away)."""


class ConfigurationError(FixtureServerError):
    """Raised when a rule or the server configuration is invalid."""
