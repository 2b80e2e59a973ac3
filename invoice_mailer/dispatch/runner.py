"""
Dispatch runner — orchestrates an invoice mailing run.

Authenticates the sender for the chosen run mode, loads the recipient
directory once, scans the invoice folder, and sends each matched invoice
independently, recording one outcome per candidate. A failure on one
invoice never stops the rest of the batch.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from invoice_mailer.discovery.recipients import RecipientDirectory
from invoice_mailer.discovery.scanner import DEFAULT_PATTERN, InvoiceCandidate, InvoiceScanner
from invoice_mailer.dispatch.outcomes import (
    BatchResult,
    DispatchOutcome,
    OutcomeStatus,
    RunMode,
)
from invoice_mailer.errors import AuthenticationError, ErrorKind
from invoice_mailer.filers.base import MailSender
from invoice_mailer.filers.message import MessageComposer
from invoice_mailer.filers.simulated import SimulatedMailSender
from invoice_mailer.logsink import LogSink


@dataclass(frozen=True)
class PreviewRow:
    """A candidate and the recipient it resolves to, without sending."""

    candidate: InvoiceCandidate
    recipient: Optional[str]


class DispatchRunner:
    """
    Coordinate scanner, recipient directory and sender over one batch.

    Usage:
        runner = DispatchRunner(GraphMailSender(graph_config, sink), sink=sink)
        result = runner.run(RunMode.DRY_RUN, "invoices", "recipients.csv")
        print(result.summary())
    """

    def __init__(
        self,
        live_sender: Optional[MailSender] = None,
        simulated_sender: Optional[MailSender] = None,
        composer: Optional[MessageComposer] = None,
        sink: Optional[LogSink] = None,
    ) -> None:
        self.sink = sink or LogSink()
        self.live_sender = live_sender
        self.simulated_sender = simulated_sender or SimulatedMailSender(self.sink)
        self.composer = composer or MessageComposer()

    def sender_for(self, mode: RunMode) -> MailSender:
        if mode is RunMode.DRY_RUN:
            return self.simulated_sender
        if self.live_sender is None:
            raise AuthenticationError("No live sender configured for a real-send run.")
        return self.live_sender

    def authenticate(self, mode: RunMode) -> MailSender:
        """
        Authenticate the sender for ``mode`` unless it already is.

        Dry runs authenticate silently; real sends authenticate interactively.

        Raises:
            AuthenticationError: If no authenticated channel could be established.
        """
        sender = self.sender_for(mode)
        if sender.is_authenticated:
            return sender

        self.sink.info("Initializing email sender...")
        if not sender.authenticate(prefer_silent=mode is RunMode.DRY_RUN):
            self.sink.error("Authentication failed. Unable to proceed.")
            raise AuthenticationError(
                "Authentication failed. Ensure you have an active internet connection "
                "and valid Azure AD credentials."
            )
        return sender

    def run(
        self,
        mode: RunMode,
        folder: str | Path,
        recipients_path: str | Path,
        sender_override: Optional[str] = None,
        pattern: str = DEFAULT_PATTERN,
        case_insensitive: bool = True,
        sheet_name: Optional[str] = None,
        on_outcome: Optional[Callable[[DispatchOutcome], None]] = None,
    ) -> BatchResult:
        """
        Execute one dispatch run.

        Args:
            mode: DRY_RUN uses the simulated sender; REAL_SEND the live one.
            folder: Folder to scan for invoice files.
            recipients_path: CSV/text or Excel recipients source.
            sender_override: From address for this run only.
            pattern: Regular expression that extracts the invoice key.
            case_insensitive: Match the pattern ignoring case.
            sheet_name: Worksheet to read when the recipients source is Excel.
            on_outcome: Called with each outcome as soon as it is recorded.

        Returns:
            A BatchResult; ``result.success`` is True when nothing failed or was skipped.

        Raises:
            AuthenticationError: Authentication failed; no invoice was processed.
        """
        dry_run = mode is RunMode.DRY_RUN
        self.sink.info("Starting dry-run mode..." if dry_run else "Starting real-send mode...")
        if not dry_run:
            self.sink.warning("WARNING: This will send actual emails to recipients!")

        # Build the scanner up front so a bad pattern fails before authentication
        scanner = InvoiceScanner(folder, pattern, case_insensitive, sink=self.sink)

        sender = self.authenticate(mode)
        try:
            effective_sender = sender.effective_sender(sender_override)
        except ValueError as e:
            self.sink.error(str(e))
            raise AuthenticationError(str(e)) from e
        if sender_override:
            self.sink.info(f"Sender email overridden for this run: {sender_override}")
        self.sink.info(f"Effective sender for this run: {effective_sender}")

        directory = RecipientDirectory(self.sink)
        directory.load(recipients_path, sheet_name=sheet_name)

        result = BatchResult(dry_run=dry_run, sender=effective_sender)
        for candidate in scanner.scan():
            outcome = self._dispatch_one(candidate, directory, sender, effective_sender, dry_run)
            result.record(outcome)
            if on_outcome is not None:
                on_outcome(outcome)

        result.completed_at = datetime.now(timezone.utc)

        if not result.outcomes:
            self.sink.warning("No invoice files found matching the pattern. Nothing to process.")
        self.sink.info(f"Completed processing {len(result.outcomes)} invoices.")
        summary = f"Success: {result.sent}, Failures: {result.failed}"
        if result.success:
            self.sink.success(summary)
        else:
            self.sink.warning(summary)
        return result

    def preview(
        self,
        folder: str | Path,
        recipients_path: str | Path,
        pattern: str = DEFAULT_PATTERN,
        case_insensitive: bool = True,
        sheet_name: Optional[str] = None,
    ) -> list[PreviewRow]:
        """List matched invoices and their recipients without authenticating or sending."""
        scanner = InvoiceScanner(folder, pattern, case_insensitive, sink=self.sink)
        directory = RecipientDirectory(self.sink)
        directory.load(recipients_path, sheet_name=sheet_name)
        return [
            PreviewRow(candidate=c, recipient=directory.lookup(c.key) if c.key else None)
            for c in scanner.scan()
        ]

    def _dispatch_one(
        self,
        candidate: InvoiceCandidate,
        directory: RecipientDirectory,
        sender: MailSender,
        effective_sender: str,
        dry_run: bool,
    ) -> DispatchOutcome:
        """Resolve and send a single candidate, converting every failure into an outcome."""
        file_name = candidate.file_name

        if not candidate.key:
            self.sink.warning(f"Could not extract invoice ID from '{file_name}', skipping")
            return DispatchOutcome(
                key=candidate.key,
                status=OutcomeStatus.SKIPPED,
                detail="no key",
                error_kind=ErrorKind.NO_KEY_EXTRACTED,
                path=candidate.path,
            )

        recipient = directory.lookup(candidate.key)
        if not recipient:
            self.sink.warning(
                f"No recipient email found for invoice ID '{candidate.key}', skipping"
            )
            return DispatchOutcome(
                key=candidate.key,
                status=OutcomeStatus.SKIPPED,
                detail="no recipient",
                error_kind=ErrorKind.NO_RECIPIENT_FOUND,
                path=candidate.path,
            )

        self.sink.info(f"Processing invoice '{candidate.key}' for '{recipient}'...")
        try:
            composed = self.composer.compose(
                key=candidate.key, file_name=file_name, recipient=recipient
            )
            send_result = sender.send(
                recipient,
                composed.subject,
                composed.body,
                attachment_path=candidate.path,
                sender=effective_sender,
            )
        except Exception as e:
            self.sink.error(f"Failed to send invoice '{candidate.key}' to '{recipient}': {e}")
            return DispatchOutcome(
                key=candidate.key,
                status=OutcomeStatus.FAILED,
                recipient=recipient,
                detail=str(e),
                error_kind=ErrorKind.SEND_FAILED,
                path=candidate.path,
            )

        if not send_result.ok:
            self.sink.error(
                f"Failed to send invoice '{candidate.key}' to '{recipient}': {send_result.detail}"
            )
            return DispatchOutcome(
                key=candidate.key,
                status=OutcomeStatus.FAILED,
                recipient=recipient,
                detail=send_result.detail,
                error_kind=send_result.error_kind or ErrorKind.SEND_FAILED,
                path=candidate.path,
            )

        verb = "simulated sending" if dry_run else "sent"
        self.sink.success(f"Successfully {verb} invoice '{candidate.key}' to '{recipient}'")
        return DispatchOutcome(
            key=candidate.key,
            status=OutcomeStatus.SENT,
            recipient=recipient,
            detail=send_result.detail,
            path=candidate.path,
        )
