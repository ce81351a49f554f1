"""
Data models for the purchase ledger.

All structured data uses dataclasses for type hints, __eq__, and __repr__.
String fields use "" for "no value" so comparisons never trip over None.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class UpsertMode(str, Enum):
    """What an upsert did to the ledger."""
    INSERTED = "inserted"
    UPDATED = "updated"


class Action(str, Enum):
    """Claim actions reported on a successful verification."""
    AUTO_BOUND = "auto_bound"        # Caller passed a user id, record was free
    BOUND = "bound"                  # Caller explicitly asked to bind
    ALREADY_BOUND = "already_bound"  # Record already belongs to this caller


class Reason(str, Enum):
    """Why a verification came back invalid."""
    NOT_FOUND = "not_found"
    WRONG_PLUGIN = "wrong_plugin"
    BOUND_TO_OTHER = "bound_to_other"
    BOUND_REQUIRES_USER_ID = "bound_requires_user_id"


# Ledger fields in column order
RECORD_FIELDS = (
    "client_name",
    "client_email",
    "paid_at",
    "access_code",
    "plugin_name",
    "binding_id",
    "transaction_id",
)


@dataclass
class PurchaseRecord:
    """
    One row of the ledger.

    transaction_id is the upsert key and never changes once written.
    binding_id is the per-user claim; it goes from empty to a value once.
    """
    transaction_id: str
    access_code: str = ""
    client_email: str = ""
    client_name: str = ""       # Returned to callers as project_name
    plugin_name: str = ""
    paid_at: Optional[datetime] = None
    binding_id: Optional[str] = None
    row: Optional[int] = field(default=None, compare=False)  # Store locator

    @property
    def is_bound(self) -> bool:
        return bool(self.binding_id)


@dataclass
class NormalizedPurchaseFact:
    """
    A purchase fact produced by the event feed.

    Only transaction_id is required. Empty fields mean "this event did
    not carry that data", never "clear the stored value".
    """
    transaction_id: str
    access_code: str = ""
    client_email: str = ""
    client_name: str = ""
    plugin_name: str = ""
    paid_at: Optional[datetime] = None
    binding_id: Optional[str] = None


@dataclass
class VerifyQuery:
    """A verification request from a client."""
    email: str
    access_code: str
    plugin_filter: str = ""
    binding_candidate: str = ""
    explicit_bind: bool = False
    bypass_cache: bool = False

    @classmethod
    def build(
        cls,
        email: Optional[str],
        access_code: Optional[str],
        plugin_filter: Optional[str] = None,
        binding_candidate: Optional[str] = None,
        explicit_bind: bool = False,
        bypass_cache: bool = False,
    ) -> "VerifyQuery":
        """Trim raw inputs; email is compared case-insensitively."""
        return cls(
            email=(email or "").strip().lower(),
            access_code=(access_code or "").strip(),
            plugin_filter=(plugin_filter or "").strip(),
            binding_candidate=(binding_candidate or "").strip(),
            explicit_bind=explicit_bind,
            bypass_cache=bypass_cache,
        )


@dataclass
class Decision:
    """
    Outcome of a verification. ok is always True here; engine failures
    are raised as LedgerError and converted at the boundary.
    """
    valid: bool
    bound: bool
    project_name: Optional[str] = None
    action: Optional[Action] = None
    reason: Optional[Reason] = None
    plugin_name_found: Optional[str] = None
    ok: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Render for the wire, dropping keys that were never set."""
        out: dict[str, Any] = {"ok": self.ok, "valid": self.valid, "bound": self.bound}
        if self.project_name is not None:
            out["project_name"] = self.project_name
        if self.action is not None:
            out["action"] = self.action.value
        if self.reason is not None:
            out["reason"] = self.reason.value
        if self.plugin_name_found is not None:
            out["plugin_name_found"] = self.plugin_name_found
        return out


@dataclass
class UpsertResult:
    """Result of reconciling one fact into the ledger."""
    mode: UpsertMode
    transaction_id: str
    access_code: str = ""
    row: Optional[int] = None


@dataclass
class IngestResult:
    """Result of handling one inbound fact, including skips."""
    upsert: Optional[UpsertResult] = None
    skipped: Optional[str] = None

    @property
    def written(self) -> bool:
        return self.upsert is not None
