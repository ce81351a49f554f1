"""
Ledger Stores - Bridge to wherever purchase rows actually live.

The adapter pattern lets us swap implementations (in-memory for testing,
a spreadsheet for production) without changing upsert or matching logic.
Rows keep their insertion order; the engines rely on it for tie-breaks.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Optional

from .models import PurchaseRecord, RECORD_FIELDS


class LedgerStore(ABC):
    """
    Abstract interface for ledger access.

    Implementations expose an ordered table of purchase rows. The engines
    never touch storage except through these methods, and only mutate
    while holding the ConcurrencyGuard.
    """

    @abstractmethod
    def scan(self) -> list[PurchaseRecord]:
        """
        Read every row in store order.

        Returns:
            List of PurchaseRecord, each with its `row` locator set
        """
        pass

    @abstractmethod
    def read(self, row: int) -> PurchaseRecord:
        """Fresh point read of a single row."""
        pass

    @abstractmethod
    def write_fields(self, row: int, values: dict[str, Any]) -> None:
        """Write the given fields of one row, leaving the others untouched."""
        pass

    @abstractmethod
    def append(self, record: PurchaseRecord) -> int:
        """Append a new row and return its locator."""
        pass

    def read_field(self, row: int, name: str) -> Any:
        """Fresh read of a single cell."""
        return getattr(self.read(row), name)

    def find_row(self, transaction_id: str) -> Optional[int]:
        """
        Locate the row holding a transaction id.

        Linear scan, exact match after trimming. Fine for thousands of rows.
        """
        wanted = str(transaction_id or "").strip()
        if not wanted:
            return None
        for record in self.scan():
            if str(record.transaction_id or "").strip() == wanted:
                return record.row
        return None


def check_fields(values: dict[str, Any]):
    unknown = set(values) - set(RECORD_FIELDS)
    if unknown:
        raise ValueError(f"Unknown ledger fields: {sorted(unknown)}")


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory store for programmatic test setup.

    Useful for unit tests where you want to control exact rows.
    Row locators are 0-based list positions.
    """

    def __init__(self, records: list[PurchaseRecord] | None = None):
        self._records: list[PurchaseRecord] = []
        self._lock = threading.Lock()
        for record in records or []:
            self.append(record)

    def __len__(self) -> int:
        return len(self._records)

    def scan(self) -> list[PurchaseRecord]:
        with self._lock:
            return [replace(r, row=i) for i, r in enumerate(self._records)]

    def read(self, row: int) -> PurchaseRecord:
        with self._lock:
            return replace(self._records[row], row=row)

    def write_fields(self, row: int, values: dict[str, Any]) -> None:
        check_fields(values)
        with self._lock:
            self._records[row] = replace(self._records[row], **values)

    def append(self, record: PurchaseRecord) -> int:
        with self._lock:
            self._records.append(replace(record, row=None))
            return len(self._records) - 1

    def clear(self):
        """Remove all rows."""
        with self._lock:
            self._records = []
