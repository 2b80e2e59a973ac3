"""
Outgoing message model and invoice message composition.

Builds Microsoft Graph ``sendMail`` payloads with optional file attachments,
and renders invoice subjects/bodies from Jinja2 templates.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from jinja2 import BaseLoader, Environment, StrictUndefined

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".csv": "text/csv",
    ".txt": "text/plain",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}

DEFAULT_SUBJECT_TEMPLATE = "Invoice {{ key }}"
DEFAULT_BODY_TEMPLATE = (
    "Please find attached invoice {{ key }}. "
    "If you have any questions, please contact our accounting department."
)


def content_type_for(path: str | Path) -> str:
    """Map a file extension to its MIME type; unknown types are generic binary."""
    return CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


@dataclass
class FileAttachment:
    name: str
    content_type: str
    content: bytes

    @classmethod
    def from_path(cls, path: str | Path) -> FileAttachment:
        p = Path(path)
        return cls(name=p.name, content_type=content_type_for(p), content=p.read_bytes())

    def to_graph(self) -> dict[str, Any]:
        return {
            "@odata.type": "#microsoft.graph.fileAttachment",
            "name": self.name,
            "contentType": self.content_type,
            "contentBytes": base64.b64encode(self.content).decode("ascii"),
        }


@dataclass
class OutgoingMessage:
    """A fully formed email ready to send through Graph."""

    to: str
    subject: str
    body_text: str
    from_address: str
    attachment: Optional[FileAttachment] = None

    def to_graph_payload(self, save_to_sent_items: bool = True) -> dict[str, Any]:
        message: dict[str, Any] = {
            "subject": self.subject,
            "body": {"contentType": "Text", "content": self.body_text},
            "toRecipients": [{"emailAddress": {"address": self.to}}],
            "from": {"emailAddress": {"address": self.from_address}},
        }
        if self.attachment is not None:
            message["attachments"] = [self.attachment.to_graph()]
        return {"message": message, "saveToSentItems": save_to_sent_items}


@dataclass
class ComposedMessage:
    subject: str
    body: str


class MessageComposer:
    """
    Render invoice email subjects and bodies.

    Templates see ``key``, ``file_name`` and ``recipient``.

    Usage:
        composer = MessageComposer(subject_template="Invoice {{ key }} from ACME")
        composed = composer.compose(key="INV100", file_name="INV100.pdf", recipient="a@x.com")
    """

    def __init__(
        self,
        subject_template: str = DEFAULT_SUBJECT_TEMPLATE,
        body_template: str = DEFAULT_BODY_TEMPLATE,
    ) -> None:
        env = Environment(loader=BaseLoader(), undefined=StrictUndefined, autoescape=False)
        self._subject = env.from_string(subject_template)
        self._body = env.from_string(body_template)

    def compose(self, key: str, file_name: str = "", recipient: str = "") -> ComposedMessage:
        variables = {"key": key, "file_name": file_name, "recipient": recipient}
        return ComposedMessage(
            subject=self._subject.render(**variables).strip(),
            body=self._body.render(**variables),
        )
