"""
Error taxonomy shared by the discovery, sending, and dispatch layers.

Per-item failures travel as ``ErrorKind`` values inside result objects;
only run-level conditions are raised as exceptions.
"""

from __future__ import annotations

import enum


class ErrorKind(enum.Enum):
    """Classification of everything that can go wrong for an item or a run."""

    NOT_FOUND = "not_found"
    PARSE_ERROR = "parse_error"
    NO_KEY_EXTRACTED = "no_key_extracted"
    NO_RECIPIENT_FOUND = "no_recipient_found"
    PERMISSION_DENIED = "permission_denied"
    SEND_FAILED = "send_failed"
    AUTH_FAILED = "auth_failed"


class InvoiceMailerError(Exception):
    """Base class for invoice mailer exceptions."""

    kind: ErrorKind | None = None


class AuthenticationError(InvoiceMailerError):
    """No authenticated channel could be established; the run cannot proceed."""

    kind = ErrorKind.AUTH_FAILED


class ConfigError(InvoiceMailerError):
    """The configuration file is unreadable or structurally invalid."""
