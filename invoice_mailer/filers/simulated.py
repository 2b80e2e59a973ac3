"""
Simulated sender for dry runs: records what would be sent, transmits nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from invoice_mailer.filers.base import MailSender, SendResult
from invoice_mailer.logsink import LogSink

DEFAULT_SIMULATED_PRINCIPAL = "dry-run@localhost"


@dataclass(frozen=True)
class SimulatedDelivery:
    sender: str
    recipient: str
    subject: str
    body: str
    attachment_path: Optional[Path]


class SimulatedMailSender(MailSender):
    """Drop-in replacement for the live sender that never touches the network."""

    def __init__(
        self,
        sink: Optional[LogSink] = None,
        principal: str = DEFAULT_SIMULATED_PRINCIPAL,
    ) -> None:
        super().__init__(sink)
        self.principal = principal
        self.deliveries: list[SimulatedDelivery] = []

    def _acquire_principal(self, prefer_silent: bool) -> Optional[str]:
        self.sink.info("Using simulated sender (dry run). No credentials required.")
        return self.principal

    def _transmit(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: Optional[Path],
        sender: str,
    ) -> SendResult:
        self.sink.info(f"DRY RUN: would send email from {sender} to {recipient}")
        self.sink.info(f"DRY RUN: subject: {subject}")
        if attachment_path is not None:
            if attachment_path.exists():
                self.sink.info(f"DRY RUN: would attach file: {attachment_path}")
            else:
                self.sink.warning(f"DRY RUN: attachment file not found: {attachment_path}")

        self.deliveries.append(
            SimulatedDelivery(
                sender=sender,
                recipient=recipient,
                subject=subject,
                body=body,
                attachment_path=attachment_path,
            )
        )
        return SendResult.sent("simulated")
