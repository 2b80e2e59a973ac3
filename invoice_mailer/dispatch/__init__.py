"""
Dispatch layer for invoice mailing runs.

Connects the scanner, recipient directory and sender, handling run modes,
per-invoice failure isolation, and batch reporting.
"""

from invoice_mailer.dispatch.config import (
    MailerConfig,
    MessageSettings,
    RecipientSettings,
    ScannerSettings,
    load_config,
)
from invoice_mailer.dispatch.outcomes import BatchResult, DispatchOutcome, OutcomeStatus, RunMode
from invoice_mailer.dispatch.runner import DispatchRunner, PreviewRow

__all__ = [
    "MailerConfig",
    "MessageSettings",
    "RecipientSettings",
    "ScannerSettings",
    "load_config",
    "BatchResult",
    "DispatchOutcome",
    "OutcomeStatus",
    "RunMode",
    "DispatchRunner",
    "PreviewRow",
]
