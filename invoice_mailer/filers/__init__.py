"""
Sending modules for delivering invoice emails.

Supports live delivery through Microsoft Graph and a simulated backend
for dry runs; both share the ``MailSender`` interface.
"""

from invoice_mailer.filers.base import AuthSession, MailSender, SendResult, SessionMode
from invoice_mailer.filers.graph_sender import GraphConfig, GraphMailSender
from invoice_mailer.filers.message import MessageComposer, OutgoingMessage, content_type_for
from invoice_mailer.filers.simulated import SimulatedDelivery, SimulatedMailSender

__all__ = [
    "AuthSession",
    "MailSender",
    "SendResult",
    "SessionMode",
    "GraphConfig",
    "GraphMailSender",
    "MessageComposer",
    "OutgoingMessage",
    "content_type_for",
    "SimulatedDelivery",
    "SimulatedMailSender",
]
