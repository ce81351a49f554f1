"""
Configuration for the purchase ledger.

Handles ledger location, product-to-plugin mappings, cache lifetime and
lock timeouts. Config is declarative JSON - edit the file, not the code.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


DEFAULT_CONFIG_PATH = Path(__file__).parent / "ledger_config.json"


@dataclass
class CacheSettings:
    """Settings for the read-only verification cache."""
    ttl_seconds: float = 300.0
    max_entries: int = 10_000


@dataclass
class LockSettings:
    """Bounded waits for the mutation guard."""
    bind_timeout_seconds: float = 5.0
    ingest_timeout_seconds: float = 10.0


@dataclass
class LedgerConfig:
    """Full configuration for the purchase ledger."""
    ledger_path: str = "data/purchases.xlsx"
    sheet_name: str = "Purchases"
    product_plugins: dict[str, str] = field(default_factory=dict)
    webhook_token: Optional[str] = None
    cache: CacheSettings = field(default_factory=CacheSettings)
    locks: LockSettings = field(default_factory=LockSettings)


def load_config(config_path: str | Path = DEFAULT_CONFIG_PATH) -> LedgerConfig:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to ledger_config.json

    Returns:
        LedgerConfig with ledger location, product mappings, and settings
    """
    path = Path(config_path)
    with open(path, "r") as f:
        data = json.load(f)

    cache_data = data.get("cache", {})
    cache = CacheSettings(
        ttl_seconds=float(cache_data.get("ttl_seconds", 300)),
        max_entries=int(cache_data.get("max_entries", 10_000)),
    )

    lock_data = data.get("locks", {})
    locks = LockSettings(
        bind_timeout_seconds=float(lock_data.get("bind_timeout_seconds", 5)),
        ingest_timeout_seconds=float(lock_data.get("ingest_timeout_seconds", 10)),
    )

    return LedgerConfig(
        ledger_path=data.get("ledger_path", "data/purchases.xlsx"),
        sheet_name=data.get("sheet_name", "Purchases"),
        product_plugins=dict(data.get("product_plugins", {})),
        webhook_token=data.get("webhook_token") or None,
        cache=cache,
        locks=locks,
    )


def plugin_for_product(product_id: Optional[str], config: LedgerConfig) -> Optional[str]:
    """
    Map a payment-gateway product id (prod_...) to a plugin name.

    Returns None for unknown or missing ids.
    """
    if not product_id:
        return None
    return config.product_plugins.get(product_id)


def normalize_plugin(name: Optional[str]) -> str:
    """Lowercase and strip non-alphanumerics: "Grid Pro!" -> "gridpro"."""
    return re.sub(r"[^a-z0-9]", "", str(name or "").lower())
