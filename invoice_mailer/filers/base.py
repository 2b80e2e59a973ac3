"""
Common interface for invoice mail senders.

A sender owns one authentication session and transmits single messages.
Two variants exist: the live Microsoft Graph sender and a simulated sender
used for dry runs. The dispatch runner picks one explicitly per run mode.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from invoice_mailer.errors import ErrorKind
from invoice_mailer.logsink import LogSink


class SessionMode(enum.Enum):
    """Authentication lifecycle. FAILED is terminal for the session."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass
class AuthSession:
    principal_address: str = ""
    sender_override: Optional[str] = None
    mode: SessionMode = SessionMode.UNAUTHENTICATED


@dataclass(frozen=True)
class SendResult:
    """Outcome of exactly one transmission attempt."""

    ok: bool
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @classmethod
    def sent(cls, detail: Optional[str] = None) -> SendResult:
        return cls(ok=True, detail=detail)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str) -> SendResult:
        return cls(ok=False, error_kind=kind, detail=detail)


class MailSender(ABC):
    """Capability set shared by live and simulated senders."""

    def __init__(self, sink: Optional[LogSink] = None) -> None:
        self.sink = sink or LogSink()
        self.session = AuthSession()

    @property
    def is_authenticated(self) -> bool:
        return self.session.mode is SessionMode.AUTHENTICATED

    def authenticate(self, prefer_silent: bool = False) -> bool:
        """
        Establish the session. Returns True on success.

        A session that has already failed is never retried.
        """
        if self.session.mode is SessionMode.AUTHENTICATED:
            return True
        if self.session.mode is SessionMode.FAILED:
            self.sink.error("Authentication previously failed for this session; not retrying.")
            return False

        self.session.mode = SessionMode.AUTHENTICATING
        try:
            principal = self._acquire_principal(prefer_silent)
        except Exception as e:
            self.sink.error(f"Authentication error: {e}")
            principal = None
        if not principal:
            self.session.mode = SessionMode.FAILED
            return False

        self.session.principal_address = principal
        self.session.mode = SessionMode.AUTHENTICATED
        self.sink.success(f"Successfully authenticated as {principal}")
        return True

    def set_sender_override(self, address: Optional[str]) -> None:
        self.session.sender_override = address or None

    def effective_sender(self, run_override: Optional[str] = None) -> str:
        """Resolve the From address: per-run override, then session override, then principal."""
        for candidate in (run_override, self.session.sender_override, self.session.principal_address):
            if candidate:
                return candidate
        raise ValueError("Effective sender email could not be determined.")

    def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: str | Path | None = None,
        sender: Optional[str] = None,
    ) -> SendResult:
        if not recipient:
            raise ValueError("recipient is required")
        if not subject:
            raise ValueError("subject is required")
        if not body:
            raise ValueError("body is required")
        if not self.is_authenticated:
            raise RuntimeError("send() called before a successful authenticate()")

        path = Path(attachment_path) if attachment_path else None
        return self._transmit(recipient, subject, body, path, self.effective_sender(sender))

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    @abstractmethod
    def _acquire_principal(self, prefer_silent: bool) -> Optional[str]:
        """Obtain credentials and return the principal's address, or None on failure."""

    @abstractmethod
    def _transmit(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: Optional[Path],
        sender: str,
    ) -> SendResult:
        """Perform one transmission attempt."""
