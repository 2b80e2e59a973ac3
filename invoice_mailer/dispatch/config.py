"""
Mailer configuration model.

Defines the settings for the Graph application registration, invoice
scanning, recipient lookup, and message templates. Supports loading from a
JSON config file, with identity settings overridable through environment
variables.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from invoice_mailer.discovery.scanner import DEFAULT_PATTERN
from invoice_mailer.errors import ConfigError
from invoice_mailer.filers.graph_sender import DEFAULT_SCOPES, GraphConfig
from invoice_mailer.filers.message import DEFAULT_BODY_TEMPLATE, DEFAULT_SUBJECT_TEMPLATE

ENV_TENANT_ID = "INVOICE_MAILER_TENANT_ID"
ENV_CLIENT_ID = "INVOICE_MAILER_CLIENT_ID"
ENV_DEFAULT_SENDER = "INVOICE_MAILER_DEFAULT_SENDER"


@dataclass
class ScannerSettings:
    """Where to look for invoices and how to extract their keys.

    Attributes:
        scan_path: Folder holding invoice files (not searched recursively).
        pattern: Regular expression whose leftmost match is the invoice key.
        case_insensitive: Whether the pattern ignores case.
    """

    scan_path: Path = Path("invoices")
    pattern: str = DEFAULT_PATTERN
    case_insensitive: bool = True


@dataclass
class RecipientSettings:
    """Recipients source: a CSV/text file or an Excel workbook.

    Attributes:
        path: Path to the recipients file; format follows the extension.
        sheet_name: Worksheet to read from a workbook (active sheet if empty).
    """

    path: Path = Path("recipients.csv")
    sheet_name: Optional[str] = None


@dataclass
class MessageSettings:
    subject_template: str = DEFAULT_SUBJECT_TEMPLATE
    body_template: str = DEFAULT_BODY_TEMPLATE


@dataclass
class MailerConfig:
    """Complete configuration for an invoice mailer run.

    Attributes:
        graph: Azure AD application and Graph endpoint settings.
        default_sender: Session-wide From override; the signed-in user if empty.
        scanner: Invoice discovery settings.
        recipients: Recipient directory settings.
        message: Subject/body templates.
        log_file: Optional file that receives a copy of all diagnostics.
        test_mode: Route every run, including `send`, through the simulated sender.
    """

    graph: GraphConfig = field(default_factory=GraphConfig)
    default_sender: str = ""
    scanner: ScannerSettings = field(default_factory=ScannerSettings)
    recipients: RecipientSettings = field(default_factory=RecipientSettings)
    message: MessageSettings = field(default_factory=MessageSettings)
    log_file: Optional[Path] = None
    test_mode: bool = False

    def identity_problems(self) -> list[str]:
        issues: list[str] = []
        if not self.graph.tenant_id.strip():
            issues.append("TenantId is not configured (graph.tenant_id)")
        if not self.graph.client_id.strip():
            issues.append("ClientId is not configured (graph.client_id)")
        return issues

    def problems(self, require_identity: bool = True) -> list[str]:
        """Return human-readable configuration problems; empty when usable."""
        issues = self.identity_problems() if require_identity else []
        try:
            re.compile(self.scanner.pattern)
        except re.error as e:
            issues.append(f"Invoice key pattern is not a valid regular expression: {e}")
        if self.default_sender and "@" not in self.default_sender:
            issues.append(f"Default sender '{self.default_sender}' is not an email address")
        if not self.scanner.scan_path.is_dir():
            issues.append(f"Invoices folder does not exist: {self.scanner.scan_path}")
        if not self.recipients.path.is_file():
            issues.append(f"Recipients file does not exist: {self.recipients.path}")
        return issues


def load_config(config_path: str | Path | None = None) -> MailerConfig:
    """Load a MailerConfig from a JSON file.

    A missing file yields the defaults. Relative paths in the file are
    resolved against the file's directory. The tenant id, client id and
    default sender may be supplied or overridden through the
    ``INVOICE_MAILER_*`` environment variables.

    Args:
        config_path: Path to the JSON config file, or None for defaults only.

    Returns:
        A fully populated MailerConfig instance.

    Raises:
        ConfigError: If the file exists but is not valid JSON or has the wrong shape.
    """
    raw: dict[str, Any] = {}
    base_dir = Path.cwd()

    if config_path is not None:
        path = Path(config_path)
        base_dir = path.resolve().parent
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Could not read config file {path}: {e}") from e
            if not isinstance(raw, dict):
                raise ConfigError(f"Config file {path} must contain a JSON object")

    graph_raw = _section(raw, "graph")
    scanner_raw = _section(raw, "scanner")
    recipients_raw = _section(raw, "recipients")
    message_raw = _section(raw, "message")

    # --- Graph / identity ---
    cache_path = graph_raw.get("token_cache_path", ".invoice_mailer_token_cache.json")
    graph = GraphConfig(
        tenant_id=os.environ.get(ENV_TENANT_ID) or graph_raw.get("tenant_id", ""),
        client_id=os.environ.get(ENV_CLIENT_ID) or graph_raw.get("client_id", ""),
        scopes=list(graph_raw.get("scopes", DEFAULT_SCOPES)),
        token_cache_path=_resolve(base_dir, cache_path) if cache_path else None,
    )
    if "base_url" in graph_raw:
        graph.base_url = graph_raw["base_url"]
    if "timeout" in graph_raw:
        graph.timeout = float(graph_raw["timeout"])

    # --- Scanner ---
    scanner = ScannerSettings(
        scan_path=_resolve(base_dir, scanner_raw.get("scan_path", "invoices")),
        pattern=scanner_raw.get("pattern") or DEFAULT_PATTERN,
        case_insensitive=bool(scanner_raw.get("case_insensitive", True)),
    )

    # --- Recipients ---
    recipients = RecipientSettings(
        path=_resolve(base_dir, recipients_raw.get("path", "recipients.csv")),
        sheet_name=recipients_raw.get("sheet_name") or None,
    )

    # --- Message ---
    message = MessageSettings(
        subject_template=message_raw.get("subject_template", DEFAULT_SUBJECT_TEMPLATE),
        body_template=message_raw.get("body_template", DEFAULT_BODY_TEMPLATE),
    )

    log_file = raw.get("log_file")

    return MailerConfig(
        graph=graph,
        default_sender=os.environ.get(ENV_DEFAULT_SENDER) or raw.get("default_sender", ""),
        scanner=scanner,
        recipients=recipients,
        message=message,
        log_file=_resolve(base_dir, log_file) if log_file else None,
        test_mode=bool(raw.get("test_mode", False)),
    )


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a JSON object")
    return value


def _resolve(base_dir: Path, value: str | Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path
