"""
Discovery modules: locating invoice files and resolving their recipients.
"""

from invoice_mailer.discovery.scanner import CandidateScan, InvoiceCandidate, InvoiceScanner
from invoice_mailer.discovery.recipients import RecipientDirectory, RecipientEntry

__all__ = [
    "CandidateScan",
    "InvoiceCandidate",
    "InvoiceScanner",
    "RecipientDirectory",
    "RecipientEntry",
]
