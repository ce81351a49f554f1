"""
Purchase Verifier - answer one verification query end to end.

Flow:
1. Validate the query
2. Cache short-circuit (read-only queries only)
3. Match against a fresh scan of the ledger
4. Commit a claim through the binding state machine when one is needed
5. Cache the read-only outcome
"""

import logging
from typing import Optional

from .adapters import LedgerStore
from .binding import claim
from .cache import DecisionCache, cache_key
from .config import LedgerConfig, normalize_plugin
from .errors import ValidationError
from .guard import ConcurrencyGuard, get_guard
from .matcher import find_candidate
from .models import Action, Decision, VerifyQuery

logger = logging.getLogger(__name__)


class PurchaseVerifier:
    """
    Verification and claim service over a ledger store.

    Claims always bypass the cache; only outcomes that did not need a
    write are memoized, and only for rows that were actually found.
    """

    def __init__(
        self,
        store: LedgerStore,
        guard: Optional[ConcurrencyGuard] = None,
        cache: Optional[DecisionCache] = None,
        config: Optional[LedgerConfig] = None,
    ):
        self.store = store
        self.config = config or LedgerConfig()
        self.guard = guard or get_guard()
        if cache is None:
            cache = DecisionCache(
                ttl_seconds=self.config.cache.ttl_seconds,
                max_entries=self.config.cache.max_entries,
            )
        self.cache = cache

    def verify(self, query: VerifyQuery) -> Decision:
        """
        Decide whether the purchase is valid and claim it if asked.

        Raises:
            ValidationError: email/code missing, or bind on a found purchase without a user id
            ContentionError: a claim could not take the guard in time
            ConfigurationError: ledger unusable
        """
        if not query.email or not query.access_code:
            raise ValidationError("missing email or access_code")

        use_cache = not query.bypass_cache and not query.explicit_bind
        key = cache_key(
            query.email,
            query.access_code,
            query.binding_candidate,
            normalize_plugin(query.plugin_filter),
        )

        # Without a user id nothing can be claimed, so the cache can
        # answer before the ledger is even read
        if use_cache and not query.binding_candidate:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for {query.email}/{query.access_code}")
                return cached

        outcome = find_candidate(self.store.scan(), query)

        if outcome.record is None:
            return outcome.decision
        if query.explicit_bind and not query.binding_candidate:
            raise ValidationError("bind requested but user id missing")

        if outcome.needs_claim or query.explicit_bind:
            return claim(
                self.store,
                self.guard,
                outcome.record.row,
                query.binding_candidate,
                action=outcome.claim_action or Action.BOUND,
                timeout=self.config.locks.bind_timeout_seconds,
            )

        if use_cache:
            if query.binding_candidate:
                cached = self.cache.get(key)
                if cached is not None:
                    return cached
            self.cache.put(key, outcome.decision)
        return outcome.decision
