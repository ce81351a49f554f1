"""
Test configuration and fixtures for the pluginpass backend test suite.

Provides:
- In-memory ledger store wired into the API (isolated per test)
- FastAPI TestClient fixture
- Factory for creating test purchases
"""
from datetime import datetime, timezone
from typing import Optional
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from backend.core.ledger import configure_ledger, reset_ledger
from pluginpass.ledger import InMemoryLedgerStore, LedgerConfig, PurchaseRecord


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def ledger_config():
    """Config with one mapped product and no webhook token."""
    return LedgerConfig(
        ledger_path="unused.xlsx",
        product_plugins={"prod_GRID000000001": "Grid"},
    )


@pytest.fixture()
def ledger_store(ledger_config):
    """Provide a fresh in-memory ledger wired into the API for each test."""
    store = InMemoryLedgerStore()
    configure_ledger(store, ledger_config)
    yield store
    reset_ledger()


@pytest.fixture()
def client(ledger_store):
    """
    Provide a FastAPI TestClient over the in-memory ledger.

    Startup never opens the workbook because the ledger is already wired.
    """
    from backend.api.main import app

    with patch("backend.api.security.settings.STRIPE_WEBHOOK_SECRET", ""):
        with TestClient(app) as c:
            yield c


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------

def create_purchase(
    store: InMemoryLedgerStore,
    *,
    transaction_id: str = "pi_1",
    client_email: str = "buyer@x.com",
    access_code: str = "INV-9",
    client_name: str = "Acme",
    plugin_name: str = "Grid",
    binding_id: Optional[str] = None,
) -> int:
    """Append a purchase row and return its locator."""
    return store.append(PurchaseRecord(
        transaction_id=transaction_id,
        client_email=client_email,
        access_code=access_code,
        client_name=client_name,
        plugin_name=plugin_name,
        paid_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        binding_id=binding_id,
    ))


@pytest.fixture()
def purchase(ledger_store):
    """One unbound Grid purchase for buyer@x.com / INV-9."""
    return create_purchase(ledger_store)
