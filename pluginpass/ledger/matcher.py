"""
Purchase Matcher - find the ledger row a verification query refers to.

1. Email (case-insensitive) + access code (exact) select the base set.
2. An optional plugin filter narrows it (normalized name equality).
3. A tie-break picks one row: first unclaimed, else first already
   claimed by this caller, else first.

Decision Matrix (selected row):
| Stored binding | Candidate given | Explicit bind | Result |
|----------------|-----------------|---------------|--------|
| empty          | no              | -             | valid, not bound |
| empty          | yes             | no            | claim -> auto_bound |
| empty          | yes             | yes           | claim -> bound |
| == candidate   | yes             | -             | valid, already_bound |
| != candidate   | yes             | -             | invalid, bound_to_other |
| set            | no              | -             | invalid, bound_requires_user_id |

Matching only reads. Claims are committed by the binding module.
"""

from dataclasses import dataclass
from typing import Optional

from .config import normalize_plugin
from .models import Action, Decision, PurchaseRecord, Reason, VerifyQuery


@dataclass
class MatchOutcome:
    """
    Output of matching for one query.

    Either `decision` is final, or `claim_action` says which claim the
    caller has to commit on `record` before it can answer. `record` is
    None when no row was selected (not found, wrong plugin).
    """
    decision: Optional[Decision] = None
    record: Optional[PurchaseRecord] = None
    claim_action: Optional[Action] = None

    @property
    def needs_claim(self) -> bool:
        return self.claim_action is not None


def _binding(record: PurchaseRecord) -> str:
    return str(record.binding_id or "").strip()


def email_code_matches(
    records: list[PurchaseRecord],
    email: str,
    access_code: str,
) -> list[PurchaseRecord]:
    """All rows for this email (any case) and access code (exact), in store order."""
    email = (email or "").strip().lower()
    access_code = (access_code or "").strip()
    return [
        r for r in records
        if str(r.client_email or "").strip().lower() == email
        and str(r.access_code or "").strip() == access_code
    ]


def filter_by_plugin(records: list[PurchaseRecord], plugin_filter: str) -> list[PurchaseRecord]:
    """Rows whose normalized plugin name equals the normalized filter."""
    wanted = normalize_plugin(plugin_filter)
    return [r for r in records if normalize_plugin(r.plugin_name) == wanted]


def select_candidate(records: list[PurchaseRecord], binding_candidate: str = "") -> PurchaseRecord:
    """
    Deterministic tie-break over a non-empty working set.

    Prefers an unclaimed row, then a row this caller already claimed
    (idempotent replay), then simply the first row.
    """
    for record in records:
        if not _binding(record):
            return record
    if binding_candidate:
        for record in records:
            if _binding(record) == binding_candidate:
                return record
    return records[0]


def derive_outcome(record: PurchaseRecord, query: VerifyQuery) -> MatchOutcome:
    """Apply the decision matrix to the selected row."""
    stored = _binding(record)
    candidate = query.binding_candidate
    project_name = record.client_name

    if not stored:
        if not candidate:
            return MatchOutcome(
                decision=Decision(valid=True, bound=False, project_name=project_name),
                record=record,
            )
        action = Action.BOUND if query.explicit_bind else Action.AUTO_BOUND
        return MatchOutcome(record=record, claim_action=action)

    if not candidate:
        decision = Decision(valid=False, bound=True, reason=Reason.BOUND_REQUIRES_USER_ID)
    elif stored == candidate:
        decision = Decision(
            valid=True, bound=True, project_name=project_name, action=Action.ALREADY_BOUND
        )
    else:
        decision = Decision(valid=False, bound=True, reason=Reason.BOUND_TO_OTHER)
    return MatchOutcome(decision=decision, record=record)


def find_candidate(records: list[PurchaseRecord], query: VerifyQuery) -> MatchOutcome:
    """
    Match a verification query against a snapshot of the ledger.

    Args:
        records: Ledger rows in store order (from LedgerStore.scan)
        query: Normalized verification query

    Returns:
        MatchOutcome with a final decision or a pending claim
    """
    matches = email_code_matches(records, query.email, query.access_code)
    if not matches:
        return MatchOutcome(decision=Decision(valid=False, bound=False, reason=Reason.NOT_FOUND))

    working = matches
    if query.plugin_filter:
        working = filter_by_plugin(matches, query.plugin_filter)
        if not working:
            # Nothing to pick from; describe the first email+code match instead
            first = matches[0]
            return MatchOutcome(
                decision=Decision(
                    valid=False,
                    bound=bool(_binding(first)),
                    reason=Reason.WRONG_PLUGIN,
                    plugin_name_found=str(first.plugin_name or ""),
                ),
            )

    record = select_candidate(working, query.binding_candidate)
    return derive_outcome(record, query)
