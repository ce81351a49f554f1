"""
Binding State Machine - commit at most one claim per purchase.

    Unbound  + claim(id)  -> Bound(id)   write, report auto_bound / bound
    Bound(id) + claim(id)  -> Bound(id)   no write, already_bound
    Bound(id) + claim(id2) -> Bound(id)   no write, bound_to_other

Nothing ever moves a record back to Unbound. Matching picks the row
without the guard, so the binding cell is re-read under the guard before
anything is written; two racing claims for the same free row resolve to
one write and one already_bound (or bound_to_other).
"""

import logging
from enum import Enum
from typing import Optional

from .adapters import LedgerStore
from .errors import ValidationError
from .guard import ConcurrencyGuard
from .models import Action, Decision, Reason

logger = logging.getLogger(__name__)


class BindingState(str, Enum):
    UNBOUND = "unbound"
    BOUND = "bound"


def binding_state(value: Optional[str]) -> BindingState:
    """Classify a stored binding cell."""
    return BindingState.BOUND if str(value or "").strip() else BindingState.UNBOUND


def decide_claim(
    current: Optional[str],
    candidate: str,
    action: Action,
    project_name: str = "",
) -> tuple[bool, Decision]:
    """
    Pure transition function.

    Returns:
        (write_needed, decision) for a claim by `candidate` on a record
        whose binding cell currently holds `current`
    """
    stored = str(current or "").strip()
    if binding_state(stored) is BindingState.UNBOUND:
        return True, Decision(valid=True, bound=True, project_name=project_name, action=action)
    if stored == candidate:
        return False, Decision(
            valid=True, bound=True, project_name=project_name, action=Action.ALREADY_BOUND
        )
    return False, Decision(valid=False, bound=True, reason=Reason.BOUND_TO_OTHER)


def claim(
    store: LedgerStore,
    guard: ConcurrencyGuard,
    row: int,
    candidate: str,
    action: Action = Action.BOUND,
    timeout: Optional[float] = None,
) -> Decision:
    """
    Claim the record at `row` for `candidate`.

    Args:
        store: Ledger holding the record
        guard: Mutation guard
        row: Store locator of the record selected by matching
        candidate: User id asking for the claim
        action: Action to report if this call performs the write
        timeout: Guard wait override in seconds

    Raises:
        ValidationError: empty candidate
        ContentionError: guard not acquired in time
    """
    candidate = str(candidate or "").strip()
    if not candidate:
        raise ValidationError("bind requested but user id missing")

    with guard.hold(timeout=timeout, purpose=f"claim row {row}"):
        fresh = store.read(row)
        write, decision = decide_claim(fresh.binding_id, candidate, action, fresh.client_name)
        if write:
            store.write_fields(row, {"binding_id": candidate})

    if write:
        logger.info(f"Bound transaction {fresh.transaction_id} to {candidate} ({action.value})")
    elif decision.reason is Reason.BOUND_TO_OTHER:
        logger.info(f"Rejected claim by {candidate} on transaction {fresh.transaction_id}: bound to other")
    return decision
