"""
Ledger wiring for the API: one store, one verifier, one ingestor per process.

Components are built on first use from backend.core.config. Tests call
configure_ledger() with an in-memory store instead.
"""
import logging
from typing import Optional

from pluginpass.ledger import (
    ConfigurationError,
    LedgerConfig,
    LedgerStore,
    PurchaseIngestor,
    PurchaseVerifier,
    XlsxLedgerStore,
    get_guard,
)

from .config import get_ledger_config

logger = logging.getLogger(__name__)

# Global state for the ledger (loaded on first use)
_ledger_state = {
    "config": None,
    "store": None,
    "verifier": None,
    "ingestor": None,
    "initialized": False,
}


def configure_ledger(store: LedgerStore, config: Optional[LedgerConfig] = None):
    """Wire the API to an explicit store (and optionally config)."""
    config = config or LedgerConfig()
    guard = get_guard()
    _ledger_state["config"] = config
    _ledger_state["store"] = store
    _ledger_state["verifier"] = PurchaseVerifier(store, guard=guard, config=config)
    _ledger_state["ingestor"] = PurchaseIngestor(store, guard=guard, config=config)
    _ledger_state["initialized"] = True


def reset_ledger():
    """Forget the current wiring; the next request rebuilds it."""
    for key in ("config", "store", "verifier", "ingestor"):
        _ledger_state[key] = None
    _ledger_state["initialized"] = False


def init_ledger():
    """
    Initialize ledger components if not already done.

    Raises:
        ConfigurationError: config unreadable or workbook unusable
    """
    if _ledger_state["initialized"]:
        return

    try:
        config = get_ledger_config()
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot load ledger config: {e}") from e

    store = XlsxLedgerStore(
        config.ledger_path,
        sheet_name=config.sheet_name,
        create=True,
        add_missing_columns=True,
    )
    configure_ledger(store, config)
    logger.info(f"Ledger ready: {config.ledger_path} [{config.sheet_name}]")


def current_config() -> LedgerConfig:
    """Config in use, loading it without touching the workbook if needed."""
    if _ledger_state["config"] is None:
        try:
            _ledger_state["config"] = get_ledger_config()
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot load ledger config: {e}") from e
    return _ledger_state["config"]


def get_verifier() -> PurchaseVerifier:
    init_ledger()
    return _ledger_state["verifier"]


def get_ingestor() -> PurchaseIngestor:
    init_ledger()
    return _ledger_state["ingestor"]


def get_store() -> Optional[LedgerStore]:
    return _ledger_state["store"]
