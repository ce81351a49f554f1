"""
Webhook authentication: optional URL token and optional Stripe signature.
"""
import hmac
from typing import Optional

import stripe
from fastapi import HTTPException, Query

from backend.core.config import settings
from backend.core.ledger import current_config
from pluginpass.ledger import ConfigurationError


def require_webhook_token(token: Optional[str] = Query(None)) -> None:
    """Require ?token=... when a webhook token is configured."""
    try:
        expected = current_config().webhook_token
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not expected:
        return
    if not hmac.compare_digest((token or "").encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid webhook token")


def verify_stripe_signature(payload: bytes, sig_header: Optional[str]) -> None:
    """Check the Stripe-Signature header when STRIPE_WEBHOOK_SECRET is set."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        return
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"), sig_header or "", settings.STRIPE_WEBHOOK_SECRET
        )
    except (UnicodeDecodeError, stripe.SignatureVerificationError):
        raise HTTPException(status_code=400, detail="Invalid signature")
