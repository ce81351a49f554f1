# Purchase ledger: payment reconciliation and one-time purchase claims
# Siloed module - no imports from the backend

from .models import (
    PurchaseRecord,
    NormalizedPurchaseFact,
    VerifyQuery,
    Decision,
    Action,
    Reason,
    UpsertMode,
    UpsertResult,
    IngestResult,
)
from .errors import LedgerError, ValidationError, ContentionError, ConfigurationError
from .config import LedgerConfig, load_config, normalize_plugin, plugin_for_product
from .adapters import LedgerStore, InMemoryLedgerStore
from .sheet_store import XlsxLedgerStore
from .guard import ConcurrencyGuard, get_guard
from .cache import DecisionCache, cache_key
from .upsert import upsert_purchase
from .matcher import find_candidate, MatchOutcome
from .binding import claim, BindingState
from .verifier import PurchaseVerifier
from .ingest import PurchaseIngestor
from .stripe_events import normalize_stripe_event, parse_webhook_body

__version__ = "1.0.0"

__all__ = [
    # Models
    "PurchaseRecord",
    "NormalizedPurchaseFact",
    "VerifyQuery",
    "Decision",
    "Action",
    "Reason",
    "UpsertMode",
    "UpsertResult",
    "IngestResult",
    # Errors
    "LedgerError",
    "ValidationError",
    "ContentionError",
    "ConfigurationError",
    # Config
    "LedgerConfig",
    "load_config",
    "normalize_plugin",
    "plugin_for_product",
    # Stores
    "LedgerStore",
    "InMemoryLedgerStore",
    "XlsxLedgerStore",
    # Concurrency
    "ConcurrencyGuard",
    "get_guard",
    # Cache
    "DecisionCache",
    "cache_key",
    # Engines
    "upsert_purchase",
    "find_candidate",
    "MatchOutcome",
    "claim",
    "BindingState",
    "PurchaseVerifier",
    "PurchaseIngestor",
    # Stripe
    "normalize_stripe_event",
    "parse_webhook_body",
]
