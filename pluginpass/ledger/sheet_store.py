"""
XLSX Ledger Store - Purchase rows kept in an Excel worksheet.

Row 1 holds the headers, data starts on row 2. Columns are located by
header name (case and spacing insensitive), so operators can reorder
columns or keep extra ones next to ours without breaking anything.
"""

import logging
import os
import re
import threading
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from .adapters import LedgerStore, check_fields
from .errors import ConfigurationError
from .models import PurchaseRecord, RECORD_FIELDS

logger = logging.getLogger(__name__)

HEADER_ROW = 1
DATA_START_ROW = 2

# First entry is the header we write when creating a column
COLUMN_PATTERNS = {
    "client_name": ["Client Name", "Customer Name"],
    "client_email": ["Client Email", "Email"],
    "paid_at": ["Paid At", "Paid Date"],
    "access_code": ["Access Code", "Receipt Number"],
    "plugin_name": ["Plugin Name", "Plugin"],
    "binding_id": ["Framer User ID", "Binding ID", "User ID"],
    "transaction_id": ["Transaction ID", "Event ID", "Payment Intent ID"],
}


def _header_key(value) -> str:
    """Header lookup key: "Client  E-mail" -> "clientemail"."""
    return re.sub(r"[^a-z0-9]", "", str(value or "").lower())


def _text(value) -> str:
    """Cell value as trimmed text. Integral floats lose their ".0"."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _parse_paid_at(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    text = _text(value)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable Paid At value: {text!r}")
        return None


def _cell_value(name: str, value: Any) -> Any:
    """Convert a record field into something openpyxl can store."""
    if name == "paid_at":
        if isinstance(value, datetime) and value.tzinfo is not None:
            # Excel has no timezone support; ledger times are UTC
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class XlsxLedgerStore(LedgerStore):
    """
    Ledger stored in one worksheet of an XLSX workbook.

    The workbook is reloaded whenever the file changes on disk, so reads
    see edits made by other processes or by hand. Every write saves the
    workbook through a temp file and an atomic rename.

    Row locators are 1-indexed worksheet row numbers.
    """

    def __init__(
        self,
        path: str | Path,
        sheet_name: str = "Purchases",
        create: bool = True,
        add_missing_columns: bool = False,
    ):
        """
        Open (or create) the ledger workbook.

        Args:
            path: Workbook location
            sheet_name: Worksheet holding the purchase rows
            create: Create the workbook/sheet with headers if absent
            add_missing_columns: Append missing headers instead of failing

        Raises:
            ConfigurationError: workbook unreadable, sheet or columns missing
        """
        self._path = Path(path)
        self._sheet_name = sheet_name
        self._create = create
        self._lock = threading.RLock()
        self._wb: Optional[Workbook] = None
        self._mtime_ns: Optional[int] = None
        self._columns: dict[str, int] = {}

        with self._lock:
            ws = self._sheet()
            if self._map_columns(ws, add_missing_columns):
                self._save()

    @property
    def path(self) -> Path:
        return self._path

    # -- workbook lifecycle -------------------------------------------------

    def _load(self) -> Workbook:
        if not self._path.exists():
            if not self._create:
                raise ConfigurationError(f"Ledger workbook not found: {self._path}")
            wb = Workbook()
            ws = wb.active
            ws.title = self._sheet_name
            for col, name in enumerate(RECORD_FIELDS, start=1):
                ws.cell(row=HEADER_ROW, column=col).value = COLUMN_PATTERNS[name][0]
            self._wb = wb
            self._save()
            logger.info(f"Created ledger workbook {self._path}")
            return wb

        try:
            wb = load_workbook(self._path)
        except (InvalidFileException, zipfile.BadZipFile, OSError) as e:
            raise ConfigurationError(f"Cannot open ledger workbook {self._path}: {e}") from e
        self._mtime_ns = self._path.stat().st_mtime_ns
        return wb

    def _sheet(self) -> Worksheet:
        """Current worksheet, reloading the workbook if the file changed."""
        stale = (
            self._wb is None
            or not self._path.exists()
            or self._path.stat().st_mtime_ns != self._mtime_ns
        )
        if stale:
            self._wb = self._load()

        if self._sheet_name not in self._wb.sheetnames:
            if not self._create:
                raise ConfigurationError(f'Sheet "{self._sheet_name}" not found')
            ws = self._wb.create_sheet(self._sheet_name)
            for col, name in enumerate(RECORD_FIELDS, start=1):
                ws.cell(row=HEADER_ROW, column=col).value = COLUMN_PATTERNS[name][0]
            self._save()
        return self._wb[self._sheet_name]

    def _save(self):
        tmp_path = self._path.with_name(f".{self._path.name}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._wb.save(tmp_path)
            os.replace(tmp_path, self._path)
        except OSError as e:
            self._discard()
            tmp_path.unlink(missing_ok=True)
            raise ConfigurationError(f"Cannot save ledger workbook {self._path}: {e}") from e
        self._mtime_ns = self._path.stat().st_mtime_ns

    def _discard(self):
        """Drop the cached workbook so the next access rereads the file."""
        self._wb = None
        self._mtime_ns = None

    def _map_columns(self, ws: Worksheet, add_missing: bool) -> bool:
        """
        Build field -> column index from the header row.

        Returns True if headers were appended and the workbook needs saving.
        """
        headers = {}
        last_col = 0
        for col_idx, cell in enumerate(ws[HEADER_ROW], start=1):
            if cell.value is None or not str(cell.value).strip():
                continue
            headers.setdefault(_header_key(cell.value), col_idx)
            last_col = col_idx

        columns = {}
        missing = []
        for name, patterns in COLUMN_PATTERNS.items():
            col = next((headers[_header_key(p)] for p in patterns if _header_key(p) in headers), None)
            if col is None:
                missing.append(name)
            else:
                columns[name] = col

        changed = False
        if missing and add_missing:
            for name in missing:
                last_col += 1
                ws.cell(row=HEADER_ROW, column=last_col).value = COLUMN_PATTERNS[name][0]
                columns[name] = last_col
                logger.info(f'Added missing ledger column "{COLUMN_PATTERNS[name][0]}"')
            changed = True
        elif missing:
            expected = ", ".join(f'"{COLUMN_PATTERNS[n][0]}"' for n in missing)
            raise ConfigurationError(f"Expected {expected} column(s) in sheet \"{self._sheet_name}\"")

        self._columns = columns
        return changed

    def _fresh_sheet(self) -> Worksheet:
        ws = self._sheet()
        # File may have been replaced by hand; headers can move
        self._map_columns(ws, add_missing=False)
        return ws

    # -- row access ---------------------------------------------------------

    def _record_at(self, ws: Worksheet, row: int) -> PurchaseRecord:
        def value(name):
            return ws.cell(row=row, column=self._columns[name]).value

        return PurchaseRecord(
            transaction_id=_text(value("transaction_id")),
            access_code=_text(value("access_code")),
            client_email=_text(value("client_email")),
            client_name=_text(value("client_name")),
            plugin_name=_text(value("plugin_name")),
            paid_at=_parse_paid_at(value("paid_at")),
            binding_id=_text(value("binding_id")) or None,
            row=row,
        )

    def _row_is_empty(self, ws: Worksheet, row: int) -> bool:
        return all(
            ws.cell(row=row, column=col).value in (None, "")
            for col in self._columns.values()
        )

    def scan(self) -> list[PurchaseRecord]:
        with self._lock:
            ws = self._fresh_sheet()
            records = []
            for row in range(DATA_START_ROW, ws.max_row + 1):
                if self._row_is_empty(ws, row):
                    continue
                records.append(self._record_at(ws, row))
            return records

    def read(self, row: int) -> PurchaseRecord:
        if row < DATA_START_ROW:
            raise IndexError(f"Row {row} is not a data row")
        with self._lock:
            return self._record_at(self._fresh_sheet(), row)

    def write_fields(self, row: int, values: dict[str, Any]) -> None:
        check_fields(values)
        if row < DATA_START_ROW:
            raise IndexError(f"Row {row} is not a data row")
        with self._lock:
            ws = self._fresh_sheet()
            try:
                for name, value in values.items():
                    ws.cell(row=row, column=self._columns[name]).value = _cell_value(name, value)
                self._save()
            except Exception:
                # The in-memory sheet may now differ from the file
                self._discard()
                raise

    def append(self, record: PurchaseRecord) -> int:
        with self._lock:
            ws = self._fresh_sheet()
            row = max(ws.max_row + 1, DATA_START_ROW)
            try:
                for name in RECORD_FIELDS:
                    ws.cell(row=row, column=self._columns[name]).value = _cell_value(
                        name, getattr(record, name)
                    )
                self._save()
            except Exception:
                self._discard()
                raise
            return row
