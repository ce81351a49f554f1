"""
Upsert Engine - reconcile one purchase fact into the ledger.

Payment events for the same transaction arrive several times, out of
order, and with different amounts of detail (a charge event knows the
receipt number, the intent event may not). Merging is additive: a later,
sparser event can fill gaps but never blank out what an earlier, richer
event already recorded.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .adapters import LedgerStore
from .errors import ValidationError
from .guard import ConcurrencyGuard
from .models import NormalizedPurchaseFact, PurchaseRecord, UpsertMode, UpsertResult

logger = logging.getLogger(__name__)

# Written only when the incoming value is non-empty
MERGE_FIELDS = ("client_name", "client_email", "access_code", "plugin_name")


def _clean(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def upsert_purchase(
    store: LedgerStore,
    fact: NormalizedPurchaseFact,
    guard: ConcurrencyGuard,
    timeout: Optional[float] = None,
) -> UpsertResult:
    """
    Insert or update the ledger row for fact.transaction_id.

    Args:
        store: Ledger to write to
        fact: Normalized purchase fact
        guard: Mutation guard (held for the lookup and the write)
        timeout: Guard wait override in seconds

    Returns:
        UpsertResult with INSERTED or UPDATED

    Raises:
        ValidationError: transaction_id missing (nothing written)
        ContentionError: guard not acquired in time
        ConfigurationError: store unusable
    """
    transaction_id = _clean(fact.transaction_id)
    if not transaction_id:
        raise ValidationError("missing transaction_id")

    paid_at = fact.paid_at or datetime.now(timezone.utc)

    with guard.hold(timeout=timeout, purpose=f"upsert {transaction_id}"):
        # Lookup happens under the guard so two deliveries of the same
        # event cannot both decide to append
        row = store.find_row(transaction_id)

        if row is None:
            record = PurchaseRecord(
                transaction_id=transaction_id,
                access_code=_clean(fact.access_code),
                client_email=_clean(fact.client_email),
                client_name=_clean(fact.client_name),
                plugin_name=_clean(fact.plugin_name),
                paid_at=paid_at,
                binding_id=_clean(fact.binding_id) or None,
            )
            row = store.append(record)
            result = UpsertResult(
                mode=UpsertMode.INSERTED,
                transaction_id=transaction_id,
                access_code=record.access_code,
                row=row,
            )
        else:
            existing = store.read(row)
            values = merge_values(existing, fact, paid_at)
            store.write_fields(row, values)
            result = UpsertResult(
                mode=UpsertMode.UPDATED,
                transaction_id=transaction_id,
                access_code=values.get("access_code", existing.access_code),
                row=row,
            )

    logger.info(f"Upsert {result.mode.value} transaction {transaction_id} (row {row})")
    return result


def merge_values(
    existing: PurchaseRecord,
    fact: NormalizedPurchaseFact,
    paid_at: datetime,
) -> dict[str, Any]:
    """
    Compute the cells to write for an existing row.

    transaction_id and paid_at are always refreshed. Other fields are
    written only when the fact carries a non-empty value. binding_id is
    only ever written into an empty cell.
    """
    values: dict[str, Any] = {
        "transaction_id": _clean(fact.transaction_id),
        "paid_at": paid_at,
    }

    for name in MERGE_FIELDS:
        incoming = _clean(getattr(fact, name))
        if incoming:
            values[name] = incoming

    incoming_binding = _clean(fact.binding_id)
    current_binding = _clean(existing.binding_id)
    if incoming_binding:
        if not current_binding:
            values["binding_id"] = incoming_binding
        elif incoming_binding != current_binding:
            logger.warning(
                f"Ignoring binding {incoming_binding!r} for transaction "
                f"{existing.transaction_id}: already bound to {current_binding!r}"
            )

    return values
