"""
Purchases API router: Stripe webhook ingestion and purchase verification.
"""
import json
import logging
import re

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from backend.api.models import LedgerStatusResponse, WebhookAck
from backend.api.security import require_webhook_token, verify_stripe_signature
from backend.core.ledger import current_config, get_ingestor, get_store, get_verifier, init_ledger
from pluginpass.ledger import (
    ConfigurationError,
    LedgerError,
    VerifyQuery,
    normalize_stripe_event,
    parse_webhook_body,
)
from pluginpass.ledger.stripe_events import is_event_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Purchases"])

# JSONP callback names: dotted JS identifiers only
CALLBACK_PATTERN = re.compile(r"^[A-Za-z_$][\w$]*(\.[A-Za-z_$][\w$]*)*$")


def _respond(payload: dict, callback: str = "") -> Response:
    """Send JSON, or JSONP when a callback name was supplied."""
    if callback:
        if not CALLBACK_PATTERN.match(callback):
            return JSONResponse({"ok": False, "error": "invalid callback name"}, status_code=400)
        body = f"{callback}({json.dumps(payload)});"
        return Response(content=body, media_type="application/javascript")
    return JSONResponse(payload)


# ============== Verification ==============

@router.get("/api/purchases/verify")
def verify_purchase(
    email: str = Query(""),
    access_code: str = Query(""),
    plugin: str = Query(""),
    plugin_name: str = Query(""),
    framer_user_id: str = Query(""),
    bind: str = Query(""),
    nocache: str = Query(""),
    callback: str = Query(""),
):
    """
    Verify a purchase and optionally bind it to a Framer user.

    - email + access_code identify the purchase (required)
    - plugin / plugin_name narrow it to one plugin (recommended)
    - framer_user_id claims an unbound purchase for that user
    - bind=1 requests the claim explicitly; nocache=1 skips cached answers
    - callback wraps the response as JSONP
    """
    query = VerifyQuery.build(
        email=email,
        access_code=access_code,
        plugin_filter=plugin or plugin_name,
        binding_candidate=framer_user_id,
        explicit_bind=bind == "1",
        bypass_cache=nocache == "1",
    )

    try:
        payload = get_verifier().verify(query).to_dict()
    except LedgerError as e:
        logger.info(f"Verification rejected for {query.email}: {e}")
        payload = {"ok": False, "error": str(e)}
    except Exception as e:
        logger.exception(f"Verification failed for {query.email}")
        payload = {"ok": False, "error": str(e)}

    return _respond(payload, callback.strip())


# ============== Stripe Webhook ==============

def _handle_event(raw: bytes, content_type: str) -> WebhookAck:
    event_id = "unknown_id"
    event_type = "unknown_type"
    try:
        event = parse_webhook_body(raw, content_type)
        event_id = str(event.get("id") or "")
        if not is_event_id(event_id):
            return WebhookAck(ok=True, skipped="No valid event ID")

        event_type = str(event.get("type") or "unknown_type").strip()
        fact = normalize_stripe_event(event, current_config())
        if fact is None:
            logger.info(f"Skipped event {event_id} ({event_type}): unhandled type or status")
            return WebhookAck(ok=True, skipped=event_type)

        result = get_ingestor().ingest(fact, source=event_id)
        if not result.written:
            return WebhookAck(ok=True, skipped=result.skipped, event_id=event_id)

        return WebhookAck(
            ok=True,
            mode=result.upsert.mode.value,
            receipt_number=result.upsert.access_code,
            transaction_id=result.upsert.transaction_id,
        )

    except LedgerError as e:
        logger.error(f"Webhook event {event_id} ({event_type}) failed: {e}")
        return WebhookAck(ok=False, error=str(e), event_id=event_id)
    except Exception as e:
        logger.exception(f"Webhook event {event_id} ({event_type}) crashed")
        return WebhookAck(ok=False, error=str(e), event_id=event_id)


@router.post("/api/stripe/webhook", dependencies=[Depends(require_webhook_token)])
async def stripe_webhook(request: Request):
    """
    Handle Stripe webhooks.

    Always answers 200 with ok/skipped/error so Stripe does not pile
    retries on business failures. Only a bad signature gets a 400.
    """
    raw = await request.body()
    verify_stripe_signature(raw, request.headers.get("Stripe-Signature"))

    ack = await run_in_threadpool(_handle_event, raw, request.headers.get("content-type", ""))
    return ack.model_dump(exclude_none=True)


@router.get("/api/stripe/webhook")
def stripe_webhook_live():
    """Liveness check for the webhook URL."""
    return {"ok": True, "message": "Stripe webhook endpoint is live."}


# ============== Status ==============

@router.get("/api/purchases/status", response_model=LedgerStatusResponse)
def ledger_status():
    """Get ledger status."""
    try:
        init_ledger()
    except ConfigurationError as e:
        logger.warning(f"Ledger not initialized: {e}")
        return LedgerStatusResponse(initialized=False)

    config = current_config()
    store = get_store()
    verifier = get_verifier()
    return LedgerStatusResponse(
        initialized=True,
        ledger_path=config.ledger_path,
        sheet_name=config.sheet_name,
        record_count=len(store.scan()),
        cache_entries=len(verifier.cache),
        plugins=sorted(set(config.product_plugins.values())),
    )
