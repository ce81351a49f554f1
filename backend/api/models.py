"""
Pydantic request/response models for the API.
"""
from pydantic import BaseModel
from typing import List, Optional


# ============== Stripe Webhook ==============

class WebhookAck(BaseModel):
    """
    Webhook response body. Always sent with HTTP 200 so Stripe stops
    retrying; ok=False reports a business failure for the logs.
    """
    ok: bool
    mode: Optional[str] = None
    receipt_number: Optional[str] = None
    transaction_id: Optional[str] = None
    skipped: Optional[str] = None
    error: Optional[str] = None
    event_id: Optional[str] = None


# ============== Ledger Status ==============

class LedgerStatusResponse(BaseModel):
    initialized: bool
    ledger_path: Optional[str] = None
    sheet_name: Optional[str] = None
    record_count: int = 0
    cache_entries: int = 0
    plugins: List[str] = []
