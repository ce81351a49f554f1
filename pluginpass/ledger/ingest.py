"""
Purchase Ingestor - apply inbound purchase facts to the ledger.

The event feed delivers at least once. When the ledger is busy we skip
the event instead of failing it: the sender redelivers, and a hard error
would only add another retry on top.
"""

import logging
from typing import Optional

from .adapters import LedgerStore
from .config import LedgerConfig
from .errors import ContentionError
from .guard import ConcurrencyGuard, get_guard
from .models import IngestResult, NormalizedPurchaseFact
from .upsert import upsert_purchase

logger = logging.getLogger(__name__)

SKIPPED_CONTENTION = "lock_contention"


class PurchaseIngestor:
    """Upserts facts under the ingest lock timeout."""

    def __init__(
        self,
        store: LedgerStore,
        guard: Optional[ConcurrencyGuard] = None,
        config: Optional[LedgerConfig] = None,
    ):
        self.store = store
        self.config = config or LedgerConfig()
        self.guard = guard or get_guard()

    def ingest(self, fact: NormalizedPurchaseFact, source: str = "") -> IngestResult:
        """
        Reconcile one fact.

        Args:
            fact: Normalized purchase fact
            source: Label for logs (e.g. the gateway event id)

        Returns:
            IngestResult with the upsert result, or skipped on contention

        Raises:
            ValidationError: fact has no transaction id
            ConfigurationError: ledger unusable
        """
        try:
            result = upsert_purchase(
                self.store,
                fact,
                self.guard,
                timeout=self.config.locks.ingest_timeout_seconds,
            )
        except ContentionError:
            logger.warning(f"Skipped {source or fact.transaction_id}: ledger lock contention")
            return IngestResult(skipped=SKIPPED_CONTENTION)

        logger.info(
            f"Handled {source or 'fact'}: {result.mode.value} "
            f"transaction {result.transaction_id}"
        )
        return IngestResult(upsert=result)
