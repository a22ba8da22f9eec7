"""
Suggest-then-confirm transaction categorization.

Per-transaction state over the `category` field:

    UNCATEGORIZED --request_suggestion--> SUGGESTED (held in memory, not persisted)
    SUGGESTED     --confirm / override--> CATEGORIZED (persisted)
    CATEGORIZED   --override-----------> CATEGORIZED (idempotent for the same value)

Classifier failures never escape as errors: they are logged and the caller
gets no suggestion. Concurrent suggestion requests for the same transaction
share a single classifier call.
"""

import asyncio
import enum
from typing import Awaitable, Callable, Hashable, Optional

from models import Transaction
import config
from .cache import TTLCache
from .category_store import CategoryStore
from .classifier import ClassifierAdapter, CategorySuggestion, ClassifierInput, ensure_usable, extract_features
from .errors import (
    CatalogUnavailable, ClassifierFailure, InvalidArgument,
    RETRYABLE_CLASSIFIER_FAILURES,
)
from .observability import logger, metrics, timed_block, log_category_set, log_classifier_failure, log_suggestion
from .repository import TransactionFilters, TransactionRepository


class CategorizationState(str, enum.Enum):
    UNCATEGORIZED = "UNCATEGORIZED"
    SUGGESTED = "SUGGESTED"
    CATEGORIZED = "CATEGORIZED"


class SuggestionCoordinator:
    """
    Process-wide bookkeeping shared by all request-scoped services:
    the in-flight classifier calls and the held (unconfirmed) suggestions.
    """

    def __init__(self, pending_ttl_seconds: float = 3600, max_pending: int = 10000):
        self._inflight: dict[Hashable, asyncio.Future] = {}
        self._pending = TTLCache(ttl_seconds=pending_ttl_seconds, max_entries=max_pending)

    async def run_once(self, key: Hashable, factory: Callable[[], Awaitable]):
        """Await `factory()`, joining an identical call already in flight for `key`."""
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda finished, k=key: self._forget(k, finished))
        else:
            metrics.increment("classifier.coalesced")
        # One waiter going away must not cancel the shared call
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def in_flight(self, key: Hashable) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    def hold(self, key: Hashable, suggestion: CategorySuggestion) -> None:
        self._pending.set(key, suggestion)

    def pending(self, key: Hashable) -> Optional[CategorySuggestion]:
        return self._pending.get(key)

    def discard(self, key: Hashable) -> None:
        self._pending.invalidate(key)


_coordinator: Optional[SuggestionCoordinator] = None


def get_suggestion_coordinator() -> SuggestionCoordinator:
    """Get or create the process-wide coordinator."""
    global _coordinator
    if _coordinator is None:
        _coordinator = SuggestionCoordinator()
    return _coordinator


class CategorizationService:
    """Orchestrates suggestion fetch, confirmation, override and persistence."""

    SOURCE_USER = "user"
    SOURCE_AI = "ai"
    SOURCE_CONFIRMED = "ai_confirmed"

    def __init__(
        self,
        repository: TransactionRepository,
        category_store: CategoryStore,
        classifier: ClassifierAdapter,
        coordinator: SuggestionCoordinator = None,
        retry_backoff: float = None,
    ):
        self.repository = repository
        self.category_store = category_store
        self.classifier = classifier
        self.coordinator = coordinator or get_suggestion_coordinator()
        self.retry_backoff = (
            config.CLASSIFIER_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        )

    # -------------------------------------------------------------------------
    # Suggestions
    # -------------------------------------------------------------------------

    async def request_suggestion(self, owner_id: str, transaction_id: str) -> Optional[CategorySuggestion]:
        """
        Fetch a fresh suggestion for one of the caller's transactions.

        Returns:
            The suggestion, or None when the classifier (or catalog) could not
            produce one.

        Raises:
            NotFound: if the transaction does not exist or is not the caller's.
        """
        txn = self.repository.find_by_id(owner_id, transaction_id)
        key = (owner_id, transaction_id)

        try:
            features = extract_features(txn)
        except ClassifierFailure as e:
            log_classifier_failure(transaction_id, e, attempt=1)
            return None

        try:
            catalog = self.category_store.list_categories()
        except CatalogUnavailable as e:
            logger.warning("Suggestion skipped; catalog unavailable",
                           transaction_id=transaction_id, reason=str(e))
            metrics.increment("classifier.failure", tags={"kind": "catalog_unavailable"})
            return None

        suggestion = await self.coordinator.run_once(
            key, lambda: self._fetch_with_retry(features, catalog)
        )

        # Only a still-uncategorized transaction moves to SUGGESTED; the
        # category may have been set elsewhere while the classifier ran
        if suggestion is not None and self.repository.current_category(owner_id, transaction_id) is None:
            self.coordinator.hold(key, suggestion)
        return suggestion

    async def _fetch_with_retry(self, features: ClassifierInput, catalog: list[str]) -> Optional[CategorySuggestion]:
        """At most one retry, and only for timeouts / unavailability."""
        for attempt in (1, 2):
            try:
                suggestion = ensure_usable(await self.classifier.predict(features), catalog)
            except RETRYABLE_CLASSIFIER_FAILURES as e:
                log_classifier_failure(features.transaction_id, e, attempt)
                if attempt == 1:
                    await asyncio.sleep(self.retry_backoff)
                    continue
                return None
            except ClassifierFailure as e:
                log_classifier_failure(features.transaction_id, e, attempt)
                return None

            log_suggestion(features.transaction_id, suggestion.category, suggestion.confidence)
            return suggestion
        return None

    def pending_suggestion(self, owner_id: str, transaction_id: str) -> Optional[CategorySuggestion]:
        return self.coordinator.pending((owner_id, transaction_id))

    def state(self, owner_id: str, transaction_id: str) -> CategorizationState:
        txn = self.repository.find_by_id(owner_id, transaction_id)
        if txn.category is not None:
            return CategorizationState.CATEGORIZED
        if self.pending_suggestion(owner_id, transaction_id) is not None:
            return CategorizationState.SUGGESTED
        return CategorizationState.UNCATEGORIZED

    # -------------------------------------------------------------------------
    # Persisting a category
    # -------------------------------------------------------------------------

    def set_category(
        self,
        owner_id: str,
        transaction_id: str,
        category: str,
        source: str = SOURCE_USER,
        confidence: Optional[float] = None,
    ) -> Transaction:
        """
        Persist `category` on the caller's transaction.

        Re-applying the current value from the same source is a no-op.

        Raises:
            NotFound: transaction missing or owned by someone else.
            InvalidCategory: `category` is not in the catalog.
        """
        txn = self.repository.find_by_id(owner_id, transaction_id)
        self.category_store.validate(category)

        key = (owner_id, transaction_id)
        if txn.category == category and txn.category_source == source:
            self.coordinator.discard(key)
            log_category_set(transaction_id, category, source, changed=False)
            return txn

        updated = self.repository.update_category(
            owner_id, transaction_id, category, source=source, confidence=confidence
        )
        self.coordinator.discard(key)
        log_category_set(transaction_id, category, source, changed=True)
        return updated

    def confirm_suggestion(self, owner_id: str, transaction_id: str) -> Transaction:
        """
        Accept the held suggestion (SUGGESTED -> CATEGORIZED).

        Raises:
            InvalidArgument: no suggestion is pending, or a category was set
                since the suggestion was made.
        """
        key = (owner_id, transaction_id)
        if self.repository.current_category(owner_id, transaction_id) is not None:
            self.coordinator.discard(key)
            raise InvalidArgument(f"Transaction '{transaction_id}' is already categorized")
        suggestion = self.pending_suggestion(owner_id, transaction_id)
        if suggestion is None:
            raise InvalidArgument(f"No pending suggestion for transaction '{transaction_id}'")
        return self.set_category(
            owner_id, transaction_id, suggestion.category,
            source=self.SOURCE_CONFIRMED, confidence=suggestion.confidence,
        )

    async def auto_categorize(self, owner_id: str, transaction_id: str) -> Transaction:
        """
        Suggest and apply in one step, but only while the transaction is still
        uncategorized. A category chosen in the meantime is never overwritten.
        """
        txn = self.repository.find_by_id(owner_id, transaction_id)
        if txn.category is not None:
            return txn

        suggestion = await self.request_suggestion(owner_id, transaction_id)
        if suggestion is None:
            return txn

        if self.repository.current_category(owner_id, transaction_id) is not None:
            logger.info("Suggestion not applied; category already chosen", transaction_id=transaction_id)
            self.coordinator.discard((owner_id, transaction_id))
            return self.repository.find_by_id(owner_id, transaction_id)

        return self.set_category(
            owner_id, transaction_id, suggestion.category,
            source=self.SOURCE_AI, confidence=suggestion.confidence,
        )

    async def categorize_uncategorized(self, owner_id: str, limit: int = 100) -> int:
        """Auto-categorize up to `limit` of the caller's uncategorized transactions."""
        pending = self.repository.find_by_owner(
            owner_id, TransactionFilters(uncategorized_only=True, limit=limit)
        )
        applied = 0
        with timed_block("categorization.bulk"):
            for txn in pending:
                result = await self.auto_categorize(owner_id, txn.id)
                if result.category is not None:
                    applied += 1
        logger.info("Bulk categorization finished", owner_id=owner_id,
                    candidates=len(pending), applied=applied)
        return applied
