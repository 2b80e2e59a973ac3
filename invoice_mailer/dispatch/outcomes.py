"""
Per-item outcomes and the batch result of a dispatch run.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from invoice_mailer.errors import ErrorKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunMode(enum.Enum):
    DRY_RUN = "dry_run"
    REAL_SEND = "real_send"


class OutcomeStatus(enum.Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DispatchOutcome:
    """What happened to one invoice candidate."""

    key: str
    status: OutcomeStatus
    recipient: Optional[str] = None
    detail: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    path: Optional[Path] = None


@dataclass
class BatchResult:
    """Summary of a full dispatch run."""

    dry_run: bool = False
    sender: str = ""
    sent: int = 0
    failed: int = 0
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status is OutcomeStatus.SKIPPED)

    def record(self, outcome: DispatchOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status is OutcomeStatus.SENT:
            self.sent += 1
        else:
            self.failed += 1

    def summary(self) -> str:
        """Format a human-readable dispatch summary."""
        mode = "DRY RUN" if self.dry_run else "LIVE"
        duration = ""
        if self.completed_at:
            elapsed = (self.completed_at - self.started_at).total_seconds()
            duration = f" in {elapsed:.1f}s"

        lines = [
            f"=== Invoice Dispatch Report ({mode}) ===",
            f"Started:  {self.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        ]
        if self.completed_at:
            lines.append(
                f"Finished: {self.completed_at.strftime('%Y-%m-%d %H:%M:%S UTC')}{duration}"
            )
        lines.extend([
            f"Sender:   {self.sender or 'N/A'}",
            f"Invoices: {len(self.outcomes)}",
            f"Sent:     {self.sent}",
            f"Skipped:  {self.skipped}",
            f"Failed:   {self.failed - self.skipped}",
            "",
        ])

        for i, o in enumerate(self.outcomes, 1):
            status = {"sent": "SENT", "skipped": "SKIP", "failed": "FAIL"}[o.status.value]
            name = o.path.name if o.path else ""
            lines.append(
                f"  [{i:3d}] {status:4s} | {o.key[:20]:20s} | "
                f"{(o.recipient or '-')[:35]:35s} | {name}"
            )
            if o.status is not OutcomeStatus.SENT and o.detail:
                lines.append(f"         Reason: {o.detail}")

        lines.append("")
        lines.append("=== End Report ===")
        return "\n".join(lines)
