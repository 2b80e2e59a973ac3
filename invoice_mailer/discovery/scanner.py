"""
Invoice scanner — find invoice files in a folder and extract their keys.

A file is an invoice candidate when its extension is one of the eligible
document/spreadsheet types and the key pattern matches its file name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from invoice_mailer.logsink import LogSink

DEFAULT_PATTERN = r"INV\d+"

# Enumerated in this order; each class is scanned independently.
ELIGIBLE_EXTENSIONS: tuple[str, ...] = (".pdf", ".xlsx")


@dataclass(frozen=True)
class InvoiceCandidate:
    """A matched invoice file and the key extracted from its name."""

    path: Path
    key: str

    @property
    def file_name(self) -> str:
        return self.path.name


class CandidateScan:
    """
    Finite, restartable sequence of candidates for one folder.

    Every iteration re-enumerates the folder, so the sequence can be
    materialized with ``list()`` any number of times.
    """

    def __init__(self, scanner: InvoiceScanner) -> None:
        self._scanner = scanner

    @property
    def folder_exists(self) -> bool:
        return self._scanner.folder.is_dir()

    def __iter__(self) -> Iterator[InvoiceCandidate]:
        return self._scanner.iter_candidates()


class InvoiceScanner:
    """
    Scan a folder (non-recursively) for invoice files.

    Usage:
        scanner = InvoiceScanner("invoices", pattern=r"INV\\d+")
        for candidate in scanner.scan():
            print(candidate.key, candidate.path)
    """

    def __init__(
        self,
        folder: str | Path,
        pattern: str = DEFAULT_PATTERN,
        case_insensitive: bool = True,
        sink: Optional[LogSink] = None,
    ) -> None:
        self.folder = Path(folder)
        self.pattern = pattern
        self.case_insensitive = case_insensitive
        self.sink = sink or LogSink()

        flags = re.IGNORECASE if case_insensitive else 0
        try:
            self._regex = re.compile(pattern, flags)
        except re.error as e:
            raise ValueError(f"Invalid invoice key pattern {pattern!r}: {e}") from e

    def scan(self) -> CandidateScan:
        return CandidateScan(self)

    def extract_key(self, file_name: str) -> Optional[str]:
        """Return the leftmost pattern match in ``file_name``, or None."""
        match = self._regex.search(file_name)
        return match.group(0) if match else None

    def iter_candidates(self) -> Iterator[InvoiceCandidate]:
        case = "insensitive" if self.case_insensitive else "sensitive"
        self.sink.info(
            f"Scanning for invoices in '{self.folder}' with pattern '{self.pattern}' (case {case})"
        )

        if not self.folder.is_dir():
            self.sink.error(f"Folder not found: {self.folder}")
            return

        for extension in ELIGIBLE_EXTENSIONS:
            try:
                files = self._list_extension(extension)
            except OSError as e:
                self.sink.error(f"Error scanning for {extension} files: {e}")
                continue

            for path in files:
                key = self.extract_key(path.name)
                if key is None:
                    continue
                self.sink.info(f"Found invoice file: {path.name} with key: {key}")
                yield InvoiceCandidate(path=path, key=key)

        self.sink.info("Invoice scan completed")

    def _list_extension(self, extension: str) -> list[Path]:
        return sorted(
            (p for p in self.folder.iterdir() if p.is_file() and p.suffix.lower() == extension),
            key=lambda p: p.name,
        )
