"""
Tests for Stripe event normalization and the ingestor.

Run with: pytest pluginpass/ledger/tests/test_stripe_events.py -v
"""

import json
from datetime import datetime, timezone
from urllib.parse import urlencode

import pytest

from pluginpass.ledger.adapters import InMemoryLedgerStore
from pluginpass.ledger.config import LedgerConfig
from pluginpass.ledger.errors import ValidationError
from pluginpass.ledger.guard import ConcurrencyGuard
from pluginpass.ledger.ingest import SKIPPED_CONTENTION, PurchaseIngestor
from pluginpass.ledger.models import NormalizedPurchaseFact, UpsertMode
from pluginpass.ledger.stripe_events import (
    is_event_id,
    normalize_stripe_event,
    parse_webhook_body,
)

CREATED = 1767225600  # 2026-01-01T00:00:00Z


@pytest.fixture
def config():
    return LedgerConfig(product_plugins={"prod_GRID": "Grid"})


def _event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _intent(**overrides):
    obj = {
        "id": "pi_1",
        "status": "succeeded",
        "invoice": "in_1",
        "receipt_email": "buyer@x.com",
        "created": CREATED,
        "metadata": {"ClientName": "Acme", "Plugin": "Grid"},
    }
    obj.update(overrides)
    return _event("payment_intent.succeeded", obj)


def _charge(**overrides):
    obj = {
        "id": "ch_1",
        "payment_intent": "pi_1",
        "status": "succeeded",
        "receipt_number": "1234-5678",
        "billing_details": {"name": "Jane Buyer", "email": "jane@x.com"},
        "receipt_email": "receipt@x.com",
        "created": CREATED,
        "metadata": {"PluginId": "prod_GRID"},
    }
    obj.update(overrides)
    return _event("charge.succeeded", obj)


def _session(event_type="checkout.session.completed", **overrides):
    obj = {
        "id": "cs_1",
        "payment_intent": "pi_1",
        "payment_status": "paid",
        "invoice": "in_1",
        "customer_details": {"name": "Jane Buyer", "email": "jane@x.com"},
        "created": CREATED,
        "metadata": {},
        "payment_details": {"order_reference": "prod_GRID"},
    }
    obj.update(overrides)
    return _event(event_type, obj)


class TestPaymentIntent:
    """Test payment_intent.succeeded."""

    def test_fields(self, config):
        fact = normalize_stripe_event(_intent(), config)
        assert fact == NormalizedPurchaseFact(
            transaction_id="pi_1",
            access_code="in_1",
            client_email="buyer@x.com",
            client_name="Acme",
            plugin_name="Grid",
            paid_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            binding_id=None,
        )

    def test_not_succeeded_skipped(self, config):
        assert normalize_stripe_event(_intent(status="processing"), config) is None

    def test_binding_from_metadata(self, config):
        fact = normalize_stripe_event(_intent(metadata={"framer_user_id": " u1 "}), config)
        assert fact.binding_id == "u1"

    def test_missing_invoice(self, config):
        fact = normalize_stripe_event(_intent(invoice=None), config)
        assert fact.access_code == ""


class TestCharge:
    """Test charge.succeeded."""

    def test_fields(self, config):
        fact = normalize_stripe_event(_charge(), config)
        assert fact.transaction_id == "pi_1"
        assert fact.access_code == "1234-5678"
        assert fact.client_name == "Jane Buyer"
        assert fact.client_email == "jane@x.com"
        assert fact.plugin_name == "Grid"

    def test_fallbacks(self, config):
        fact = normalize_stripe_event(
            _charge(receipt_number=None, invoice="in_9", billing_details={}), config
        )
        assert fact.access_code == "in_9"
        assert fact.client_email == "receipt@x.com"
        assert fact.client_name == ""

    def test_no_payment_intent_skipped(self, config):
        assert normalize_stripe_event(_charge(payment_intent=None), config) is None

    def test_failed_skipped(self, config):
        assert normalize_stripe_event(_charge(status="failed"), config) is None


class TestCheckoutSession:
    """Test checkout.session.* events."""

    @pytest.mark.parametrize("event_type", [
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
    ])
    def test_fields(self, config, event_type):
        fact = normalize_stripe_event(_session(event_type), config)
        assert fact.transaction_id == "pi_1"
        assert fact.access_code == "in_1"
        assert fact.client_email == "jane@x.com"
        assert fact.plugin_name == "Grid"

    def test_session_id_when_no_invoice(self, config):
        fact = normalize_stripe_event(_session(invoice=None), config)
        assert fact.access_code == "cs_1"

    def test_unpaid_skipped(self, config):
        assert normalize_stripe_event(_session(payment_status="unpaid"), config) is None


class TestSkippedEvents:
    """Test events that produce no fact."""

    def test_unhandled_type(self, config):
        assert normalize_stripe_event(_event("customer.created", {"id": "cus_1"}), config) is None

    def test_missing_object(self, config):
        assert normalize_stripe_event({"id": "evt_1", "type": "charge.succeeded"}, config) is None

    def test_unknown_product(self, config):
        fact = normalize_stripe_event(_charge(metadata={"PluginId": "prod_OTHER"}), config)
        assert fact.plugin_name == ""

    def test_without_config_only_explicit_plugin(self):
        assert normalize_stripe_event(_charge()).plugin_name == ""
        assert normalize_stripe_event(_intent()).plugin_name == "Grid"

    def test_bad_created_uses_now(self, config):
        before = datetime.now(timezone.utc)
        fact = normalize_stripe_event(_intent(created="yesterday"), config)
        assert fact.paid_at >= before

    @pytest.mark.parametrize("data", ["oops", ["x"], 7, None])
    def test_non_object_data(self, config, data):
        event = {"id": "evt_1", "type": "charge.succeeded", "data": data}
        assert normalize_stripe_event(event, config) is None


class TestMalformedNestedObjects:
    """Test that non-mapping nested objects read as empty."""

    def test_metadata_string(self, config):
        fact = normalize_stripe_event(_intent(metadata="Grid"), config)
        assert fact.transaction_id == "pi_1"
        assert fact.client_name == ""
        assert fact.plugin_name == ""
        assert fact.binding_id is None

    def test_billing_details_list(self, config):
        fact = normalize_stripe_event(_charge(billing_details=["Jane"]), config)
        assert fact.client_email == "receipt@x.com"
        assert fact.client_name == ""

    def test_customer_and_payment_details(self, config):
        fact = normalize_stripe_event(
            _session(customer_details="Jane", payment_details=42), config
        )
        assert fact.transaction_id == "pi_1"
        assert fact.client_email == ""
        assert fact.plugin_name == ""


class TestParseWebhookBody:
    """Test body decoding."""

    def test_json(self):
        assert parse_webhook_body(b'{"id": "evt_1"}', "application/json") == {"id": "evt_1"}

    def test_empty_body(self):
        assert parse_webhook_body(b"", "application/json") == {}

    def test_form_payload(self):
        body = urlencode({"payload": json.dumps({"id": "evt_2", "type": "charge.succeeded"})})
        data = parse_webhook_body(body, "application/x-www-form-urlencoded; charset=utf-8")
        assert data["id"] == "evt_2"

    def test_form_without_payload_field(self):
        assert parse_webhook_body("id=evt_3&type=x", "application/x-www-form-urlencoded") == {}

    def test_form_payload_not_json(self):
        data = parse_webhook_body("payload=nope&id=evt_3", "application/x-www-form-urlencoded")
        assert data == {"payload": "nope", "id": "evt_3"}

    def test_invalid_json(self):
        with pytest.raises(ValidationError, match="invalid JSON"):
            parse_webhook_body(b"{nope", "application/json")

    def test_non_object_json(self):
        with pytest.raises(ValidationError):
            parse_webhook_body(b"[1, 2]", "application/json")

    def test_non_utf8_body(self):
        with pytest.raises(ValidationError, match="UTF-8"):
            parse_webhook_body(b"\xff\xfe{}", "application/json")

    @pytest.mark.parametrize("payload", ["[1]", "\"evt_1\"", "null"])
    def test_form_payload_not_an_object(self, payload):
        with pytest.raises(ValidationError, match="JSON object"):
            parse_webhook_body(urlencode({"payload": payload}), "application/x-www-form-urlencoded")

    @pytest.mark.parametrize("value, expected", [
        ("evt_123", True),
        ("pi_123", False),
        ("", False),
        (None, False),
    ])
    def test_is_event_id(self, value, expected):
        assert is_event_id(value) is expected


class TestIngestor:
    """Test applying normalized events to a store."""

    @pytest.fixture
    def store(self):
        return InMemoryLedgerStore()

    @pytest.fixture
    def ingestor(self, store, config):
        return PurchaseIngestor(store, guard=ConcurrencyGuard(), config=config)

    def test_events_out_of_order(self, ingestor, store, config):
        charge = ingestor.ingest(normalize_stripe_event(_charge(), config), source="evt_c")
        intent = ingestor.ingest(normalize_stripe_event(_intent(), config), source="evt_i")
        session = ingestor.ingest(normalize_stripe_event(_session(), config), source="evt_s")

        assert charge.upsert.mode is UpsertMode.INSERTED
        assert intent.upsert.mode is UpsertMode.UPDATED
        assert session.upsert.mode is UpsertMode.UPDATED

        [record] = store.scan()
        assert record.transaction_id == "pi_1"
        # Last non-empty value wins for each field
        assert record.access_code == "in_1"
        assert record.client_email == "jane@x.com"
        assert record.client_name == "Jane Buyer"
        assert record.plugin_name == "Grid"

    def test_redelivery(self, ingestor, store, config):
        fact = normalize_stripe_event(_charge(), config)
        ingestor.ingest(fact)
        result = ingestor.ingest(fact)
        assert result.written
        assert result.upsert.mode is UpsertMode.UPDATED
        assert len(store) == 1

    def test_contention_skips(self, store, config):
        guard = ConcurrencyGuard()
        config.locks.ingest_timeout_seconds = 0.05
        ingestor = PurchaseIngestor(store, guard=guard, config=config)

        with guard.hold():
            result = ingestor.ingest(normalize_stripe_event(_charge(), config))

        assert not result.written
        assert result.skipped == SKIPPED_CONTENTION
        assert len(store) == 0

    def test_validation_propagates(self, ingestor):
        with pytest.raises(ValidationError):
            ingestor.ingest(NormalizedPurchaseFact(transaction_id=""))
