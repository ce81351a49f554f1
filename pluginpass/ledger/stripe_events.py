"""
Stripe Event Adapter - turn webhook payloads into purchase facts.

Several Stripe events describe the same payment. All of them are keyed
on the PaymentIntent id (pi_...), so whichever arrives first creates the
ledger row and the rest fill in what they know:

    payment_intent.succeeded      invoice id, receipt email, metadata name
    charge.succeeded              receipt number, billing name/email
    checkout.session.completed    invoice or session id, customer details
    checkout.session.async_payment_succeeded  (same as completed)

Anything else, or any payment that has not actually succeeded, is skipped.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import parse_qs

from .config import LedgerConfig, plugin_for_product
from .errors import ValidationError
from .models import NormalizedPurchaseFact

logger = logging.getLogger(__name__)

CHECKOUT_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}
HANDLED_EVENTS = {"payment_intent.succeeded", "charge.succeeded"} | CHECKOUT_EVENTS


def parse_webhook_body(body: bytes | str, content_type: str = "application/json") -> dict[str, Any]:
    """
    Decode a webhook body.

    Supports:
    - application/json
    - application/x-www-form-urlencoded with the event JSON in "payload"

    Raises:
        ValidationError: body is not UTF-8, not valid JSON, or not an object
    """
    if isinstance(body, bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"webhook body is not UTF-8: {e}") from e
    else:
        text = body or ""
    ct = (content_type or "").lower()

    if "application/x-www-form-urlencoded" in ct:
        form = {k: v[0] for k, v in parse_qs(text).items() if v}
        try:
            data = json.loads(form.get("payload") or "{}")
        except json.JSONDecodeError:
            return form
        if not isinstance(data, dict):
            raise ValidationError("webhook payload must be a JSON object")
        return data

    try:
        data = json.loads(text or "{}")
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON payload: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("webhook payload must be a JSON object")
    return data


def is_event_id(value: Any) -> bool:
    return str(value or "").startswith("evt_")


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _dict(value: Any) -> dict:
    """Nested event objects; anything that is not a mapping counts as empty."""
    return value if isinstance(value, dict) else {}


def _paid_at(created: Any) -> datetime:
    try:
        if created:
            return datetime.fromtimestamp(int(created), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Ignoring bad created timestamp {created!r}")
    return datetime.now(timezone.utc)


def _plugin_name(obj: dict, config: Optional[LedgerConfig]) -> str:
    """Explicit metadata.Plugin wins, otherwise map the product id."""
    metadata = _dict(obj.get("metadata"))
    explicit = _str(metadata.get("Plugin"))
    if explicit:
        return explicit

    product_id = (
        metadata.get("PluginId")
        or metadata.get("order_reference")
        or _dict(obj.get("payment_details")).get("order_reference")
    )
    if config is None:
        return ""
    return plugin_for_product(_str(product_id), config) or ""


def normalize_stripe_event(
    event: dict[str, Any],
    config: Optional[LedgerConfig] = None,
) -> Optional[NormalizedPurchaseFact]:
    """
    Convert a Stripe event into a NormalizedPurchaseFact.

    Args:
        event: Parsed webhook event
        config: Provides the product -> plugin mapping

    Returns:
        A fact keyed on the PaymentIntent id, or None if the event should
        be skipped (unhandled type, unsuccessful payment, no intent id)
    """
    event_type = _str(event.get("type"))
    obj = _dict(event.get("data")).get("object")
    if event_type not in HANDLED_EVENTS or not isinstance(obj, dict):
        return None

    metadata = _dict(obj.get("metadata"))

    if event_type == "payment_intent.succeeded":
        if obj.get("status") != "succeeded":
            return None
        transaction_id = _str(obj.get("id"))
        access_code = _str(obj.get("invoice"))
        client_email = _str(obj.get("receipt_email"))
        client_name = _str(metadata.get("ClientName"))

    elif event_type == "charge.succeeded":
        if obj.get("status") != "succeeded":
            return None
        transaction_id = _str(obj.get("payment_intent"))
        access_code = _str(obj.get("receipt_number")) or _str(obj.get("invoice"))
        billing = _dict(obj.get("billing_details"))
        client_name = _str(billing.get("name"))
        client_email = _str(billing.get("email")) or _str(obj.get("receipt_email"))

    else:
        if obj.get("payment_status") != "paid":
            return None
        transaction_id = _str(obj.get("payment_intent"))
        access_code = _str(obj.get("invoice")) or _str(obj.get("id"))
        customer = _dict(obj.get("customer_details"))
        client_name = _str(customer.get("name"))
        client_email = _str(customer.get("email"))

    # Without a PaymentIntent id there is nothing to upsert on
    if not transaction_id:
        return None

    return NormalizedPurchaseFact(
        transaction_id=transaction_id,
        access_code=access_code,
        client_email=client_email,
        client_name=client_name,
        plugin_name=_plugin_name(obj, config),
        paid_at=_paid_at(obj.get("created")),
        binding_id=_str(metadata.get("framer_user_id")) or None,
    )
