"""
Recipient directory — maps invoice keys to email addresses.

Loads from either a delimited text file (``key,email`` per line, with an
optional header) or an Excel workbook whose header row names the
``InvoiceKey`` and ``Email`` columns. Loading never raises: problems with
individual rows are logged and skipped, problems with the whole source are
logged and leave the directory empty.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from openpyxl import load_workbook

from invoice_mailer.errors import ErrorKind
from invoice_mailer.logsink import LogSink

SPREADSHEET_EXTENSIONS = {".xlsx", ".xlsm"}

KEY_COLUMN = "invoicekey"
EMAIL_COLUMN = "email"

KEY_MARKERS = ("key",)
ADDRESS_MARKERS = ("email", "mail")


@dataclass(frozen=True)
class RecipientEntry:
    key: str
    address: str


class RecipientSourceError(Exception):
    """The recipients source as a whole could not be used."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class RecipientDirectory:
    """
    In-memory key → address mapping loaded from a recipients file.

    Usage:
        directory = RecipientDirectory(sink)
        directory.load("recipients.csv")
        email = directory.lookup("INV100")
    """

    def __init__(self, sink: Optional[LogSink] = None) -> None:
        self.sink = sink or LogSink()
        self.source: Optional[Path] = None
        self.last_error: Optional[ErrorKind] = None
        self._recipients: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._recipients)

    def __contains__(self, key: object) -> bool:
        return key in self._recipients

    def entries(self) -> list[RecipientEntry]:
        return [RecipientEntry(k, v) for k, v in self._recipients.items()]

    def load(self, path: str | Path, sheet_name: Optional[str] = None) -> dict[str, str]:
        """
        Replace the directory's contents with the entries in ``path``.

        Returns a copy of the resulting mapping; an empty dict if the source
        could not be read.
        """
        self.source = Path(path)
        self.last_error = None
        self._recipients = {}

        if not self.source.is_file():
            self.last_error = ErrorKind.NOT_FOUND
            self.sink.error(f"Recipients file not found: {self.source}")
            return {}

        self.sink.info(f"Loading recipients from: {self.source}")
        try:
            if self.source.suffix.lower() in SPREADSHEET_EXTENSIONS:
                rows = self._read_spreadsheet(self.source, sheet_name)
            else:
                rows = self._read_delimited(self.source)
            recipients = self._build_mapping(rows)
        except RecipientSourceError as e:
            self.last_error = e.kind
            self.sink.error(f"Error loading recipients file {self.source}: {e}")
            return {}
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            self.last_error = ErrorKind.PARSE_ERROR
            self.sink.error(f"Error reading recipients file {self.source}: {e}")
            return {}

        self._recipients = recipients
        self.sink.info(f"Loaded {len(recipients)} recipient mappings")
        return dict(recipients)

    def lookup(self, key: str) -> Optional[str]:
        email = self._recipients.get(key)
        if email is not None:
            self.sink.info(f"Found recipient for invoice {key}: {email}")
            return email
        self.sink.warning(f"No recipient found for invoice {key}")
        return None

    # ------------------------------------------------------------------
    # Row assembly
    # ------------------------------------------------------------------

    def _build_mapping(self, rows: Iterable[tuple[str, str, str]]) -> dict[str, str]:
        """Fold ``(key, email, raw_row)`` triples into a mapping, last write wins."""
        recipients: dict[str, str] = {}
        warned: set[str] = set()
        for key, email, raw in rows:
            if not key or not email:
                self.sink.warning(f"Invalid recipient data in row: {raw}")
                continue
            if key in recipients and key not in warned:
                warned.add(key)
                self.sink.warning(
                    f"Duplicate recipient key {key}: '{recipients[key]}' replaced by '{email}'"
                )
            recipients[key] = email
        return recipients

    # ------------------------------------------------------------------
    # Delimited text
    # ------------------------------------------------------------------

    def _read_delimited(self, path: Path) -> Iterator[tuple[str, str, str]]:
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            lines = [line for line in f.read().splitlines() if line.strip()]

        for index, raw in enumerate(lines):
            fields = next(csv.reader([raw]))
            if index == 0 and _looks_like_header(fields):
                continue
            if len(fields) < 2:
                self.sink.warning(f"Malformed recipients line: {raw}")
                continue
            yield fields[0].strip(), fields[1].strip(), raw

    # ------------------------------------------------------------------
    # Spreadsheet
    # ------------------------------------------------------------------

    def _read_spreadsheet(
        self, path: Path, sheet_name: Optional[str]
    ) -> list[tuple[str, str, str]]:
        try:
            workbook = load_workbook(path, read_only=True, data_only=True)
        except Exception as e:
            # openpyxl raises a grab-bag of zipfile/XML/KeyError types for bad files
            raise RecipientSourceError(ErrorKind.PARSE_ERROR, f"unreadable workbook: {e}") from e

        try:
            if sheet_name:
                if sheet_name not in workbook.sheetnames:
                    raise RecipientSourceError(
                        ErrorKind.PARSE_ERROR, f"worksheet '{sheet_name}' not found"
                    )
                sheet = workbook[sheet_name]
            else:
                sheet = workbook.active
            if sheet is None:
                raise RecipientSourceError(ErrorKind.PARSE_ERROR, "workbook has no worksheet")

            rows = sheet.iter_rows(values_only=True)
            header = None
            for row in rows:
                if any(_cell_text(c) for c in row):
                    header = [_cell_text(c).lower() for c in row]
                    break
            if header is None:
                raise RecipientSourceError(ErrorKind.PARSE_ERROR, "worksheet is empty")

            missing = [c for c in (KEY_COLUMN, EMAIL_COLUMN) if c not in header]
            if missing:
                raise RecipientSourceError(
                    ErrorKind.PARSE_ERROR,
                    "missing required column(s): InvoiceKey and Email must both be present",
                )
            key_idx = header.index(KEY_COLUMN)
            email_idx = header.index(EMAIL_COLUMN)

            result: list[tuple[str, str, str]] = []
            for row in rows:
                cells = [_cell_text(c) for c in row]
                if not any(cells):
                    continue
                key = cells[key_idx] if key_idx < len(cells) else ""
                email = cells[email_idx] if email_idx < len(cells) else ""
                result.append((key, email, ",".join(cells)))
            return result
        finally:
            workbook.close()


def _looks_like_header(fields: list[str]) -> bool:
    if len(fields) < 2:
        return False
    line = " ".join(f.strip() for f in fields).lower()
    return (
        any(m in line for m in KEY_MARKERS)
        and any(m in line for m in ADDRESS_MARKERS)
        and "@" not in line
    )


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
