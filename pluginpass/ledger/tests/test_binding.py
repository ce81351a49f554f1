"""
Tests for the binding state machine.

Run with: pytest pluginpass/ledger/tests/test_binding.py -v
"""

import threading

import pytest

from pluginpass.ledger.adapters import InMemoryLedgerStore
from pluginpass.ledger.binding import BindingState, binding_state, claim, decide_claim
from pluginpass.ledger.errors import ContentionError, ValidationError
from pluginpass.ledger.guard import ConcurrencyGuard
from pluginpass.ledger.models import Action, PurchaseRecord, Reason


class CountingStore(InMemoryLedgerStore):
    """In-memory store that counts binding writes."""

    def __init__(self, records=None):
        super().__init__(records)
        self.binding_writes = 0

    def write_fields(self, row, values):
        if "binding_id" in values:
            self.binding_writes += 1
        super().write_fields(row, values)


@pytest.fixture
def store():
    return CountingStore([PurchaseRecord(transaction_id="pi_1", client_name="Acme")])


@pytest.fixture
def guard():
    return ConcurrencyGuard(timeout_seconds=5.0)


class TestBindingState:
    """Test state classification."""

    @pytest.mark.parametrize("value, expected", [
        (None, BindingState.UNBOUND),
        ("", BindingState.UNBOUND),
        ("   ", BindingState.UNBOUND),
        ("u1", BindingState.BOUND),
    ])
    def test_binding_state(self, value, expected):
        assert binding_state(value) is expected


class TestDecideClaim:
    """Test the pure transition function."""

    def test_unbound_writes(self):
        write, decision = decide_claim(None, "u1", Action.AUTO_BOUND, "Acme")
        assert write
        assert decision.to_dict() == {
            "ok": True, "valid": True, "bound": True, "project_name": "Acme", "action": "auto_bound",
        }

    def test_same_candidate_no_write(self):
        write, decision = decide_claim("u1", "u1", Action.BOUND, "Acme")
        assert not write
        assert decision.action is Action.ALREADY_BOUND
        assert decision.valid

    def test_other_candidate_no_write(self):
        write, decision = decide_claim("u1", "u2", Action.BOUND)
        assert not write
        assert decision.reason is Reason.BOUND_TO_OTHER
        assert not decision.valid
        assert decision.bound


class TestClaim:
    """Test committing claims against a store."""

    def test_claim_free_record(self, store, guard):
        decision = claim(store, guard, 0, "u1", action=Action.AUTO_BOUND)

        assert decision.action is Action.AUTO_BOUND
        assert decision.project_name == "Acme"
        assert store.read(0).binding_id == "u1"
        assert store.binding_writes == 1

    def test_candidate_trimmed(self, store, guard):
        claim(store, guard, 0, "  u1 ")
        assert store.read(0).binding_id == "u1"

    def test_replay_is_noop(self, store, guard):
        claim(store, guard, 0, "u1")
        decision = claim(store, guard, 0, "u1")

        assert decision.action is Action.ALREADY_BOUND
        assert store.binding_writes == 1

    def test_binding_is_permanent(self, store, guard):
        claim(store, guard, 0, "u1")
        decision = claim(store, guard, 0, "u2")

        assert decision.reason is Reason.BOUND_TO_OTHER
        assert store.read(0).binding_id == "u1"
        assert store.binding_writes == 1

    def test_rereads_before_writing(self, store, guard):
        # Matching saw the row unbound; someone claimed it in between
        stale = store.read(0)
        store.write_fields(0, {"binding_id": "u9"})
        assert stale.binding_id is None

        decision = claim(store, guard, stale.row, "u1", action=Action.AUTO_BOUND)
        assert decision.reason is Reason.BOUND_TO_OTHER
        assert store.read(0).binding_id == "u9"

    @pytest.mark.parametrize("candidate", ["", "   ", None])
    def test_empty_candidate(self, store, guard, candidate):
        with pytest.raises(ValidationError, match="user id missing"):
            claim(store, guard, 0, candidate)
        assert store.binding_writes == 0

    def test_busy_guard(self, store):
        guard = ConcurrencyGuard()
        with guard.hold():
            with pytest.raises(ContentionError):
                claim(store, guard, 0, "u1", timeout=0.05)
        assert store.read(0).binding_id is None


class TestConcurrentClaims:
    """Test racing claims on the same record."""

    def _race(self, store, guard, candidates):
        results = []
        barrier = threading.Barrier(len(candidates))

        def worker(candidate):
            barrier.wait()
            results.append(claim(store, guard, 0, candidate, action=Action.AUTO_BOUND))

        threads = [threading.Thread(target=worker, args=(c,)) for c in candidates]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_same_candidate_single_write(self, store, guard):
        results = self._race(store, guard, ["u1"] * 8)

        actions = sorted(r.action.value for r in results)
        assert actions == ["already_bound"] * 7 + ["auto_bound"]
        assert store.binding_writes == 1
        assert store.read(0).binding_id == "u1"

    def test_different_candidates_one_winner(self, store, guard):
        candidates = [f"u{i}" for i in range(6)]
        results = self._race(store, guard, candidates)

        winners = [r for r in results if r.valid]
        losers = [r for r in results if not r.valid]
        assert len(winners) == 1
        assert all(r.reason is Reason.BOUND_TO_OTHER for r in losers)
        assert store.binding_writes == 1
        assert store.read(0).binding_id in candidates
