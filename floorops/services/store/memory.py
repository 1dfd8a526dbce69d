"""
In-Memory Document Store Implementation

Simulates the real-time document store without a database.
Used in development mode (ENV_MODE=development) and in tests to:
    - Run the complete claim/reject/audit flow locally
    - Race many waiter sessions against one process
    - Inject outages to exercise StoreUnavailable and audit divergence

Behavior:
    - Optional simulated latency before every operation, which lets
      concurrent coroutines interleave like real network clients
    - Optional random failures (StoreUnavailable) at ``failure_rate``
    - ``update_if`` checks and writes with no suspension in between, so it
      is atomic with respect to every other coroutine
    - Subscribers receive the full matching set after every relevant change

Version: 1.0.0
"""

import asyncio
import copy
import logging
import random
import uuid
from typing import Any, Mapping, Optional

from floorops.core.exceptions import DocumentNotFound, StoreUnavailable
from floorops.services.store.base import (
    BaseStoreAdapter,
    Document,
    Predicate,
    Subscription,
    apply_fields,
    match_all,
    matches_expected,
)

logger = logging.getLogger(__name__)


class InMemoryStoreAdapter(BaseStoreAdapter):
    """
    Mock implementation of the document store.

    Attributes:
        failure_rate: Probability of a simulated outage per operation (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> store = InMemoryStoreAdapter()
        >>> oid = await store.insert("orders", {"status": "pending"})
        >>> await store.update_if("orders", oid, {"claimed_by": None}, {"claimed_by": "w1"})
        True
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency

        self._collections: dict[str, dict[str, Document]] = {}
        self._subscriptions: dict[str, list[Subscription]] = {}

        logger.info(
            f"InMemoryStoreAdapter initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    def _generate_id(self) -> str:
        return uuid.uuid4().hex[:20]

    async def _simulate(self, operation: str) -> None:
        """Simulate network latency and random outages."""
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))
        else:
            # Still yield so concurrent callers interleave at every store call
            await asyncio.sleep(0)
        if self.failure_rate and random.random() < self.failure_rate:
            logger.debug(f"Mock: simulated outage during {operation}")
            raise StoreUnavailable(f"Simulated outage during {operation}")

    def _collection(self, name: str) -> dict[str, Document]:
        return self._collections.setdefault(name, {})

    @staticmethod
    def _with_id(doc_id: str, data: Document) -> Document:
        document = copy.deepcopy(data)
        document["id"] = doc_id
        return document

    def _matching(self, collection: str, predicate: Predicate) -> list[Document]:
        return [
            document
            for document in (
                self._with_id(doc_id, data)
                for doc_id, data in self._collection(collection).items()
            )
            if predicate(document)
        ]

    def _notify(
        self,
        collection: str,
        doc_id: str,
        before: Optional[Document],
        after: Optional[Document],
    ) -> None:
        """Push a fresh snapshot to every subscriber the change is relevant to."""
        before_doc = self._with_id(doc_id, before) if before is not None else None
        after_doc = self._with_id(doc_id, after) if after is not None else None

        for subscription in list(self._subscriptions.get(collection, [])):
            relevant = (
                (before_doc is not None and subscription.predicate(before_doc))
                or (after_doc is not None and subscription.predicate(after_doc))
            )
            if relevant:
                subscription.push(self._matching(collection, subscription.predicate))

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await self._simulate("get")
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None
        return self._with_id(doc_id, data)

    async def query(self, collection: str, predicate: Optional[Predicate] = None) -> list[Document]:
        await self._simulate("query")
        return self._matching(collection, predicate or match_all)

    def subscribe(self, collection: str, predicate: Optional[Predicate] = None) -> Subscription:
        subscription = Subscription(collection, predicate or match_all)
        subscribers = self._subscriptions.setdefault(collection, [])
        subscribers.append(subscription)
        subscription.add_close_callback(lambda: subscribers.remove(subscription))

        subscription.push(self._matching(collection, subscription.predicate))
        logger.debug(f"Mock: subscription opened on {collection} ({len(subscribers)} active)")
        return subscription

    # =========================================================================
    # WRITES
    # =========================================================================

    async def insert(self, collection: str, data: Mapping[str, Any]) -> str:
        await self._simulate("insert")
        doc_id = self._generate_id()
        stored = apply_fields({}, data)
        stored.pop("id", None)
        self._collection(collection)[doc_id] = stored
        self._notify(collection, doc_id, None, stored)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        await self._simulate("update")
        documents = self._collection(collection)
        if doc_id not in documents:
            raise DocumentNotFound(collection, doc_id)
        before = documents[doc_id]
        after = apply_fields(before, fields)
        documents[doc_id] = after
        self._notify(collection, doc_id, before, after)

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        await self._simulate("update_if")
        # No await below this point: check-and-write is atomic.
        documents = self._collection(collection)
        if doc_id not in documents:
            raise DocumentNotFound(collection, doc_id)
        before = documents[doc_id]
        if not matches_expected(before, expected):
            logger.debug(f"Mock: conditional update on {collection}/{doc_id} rejected")
            return False
        after = apply_fields(before, fields)
        documents[doc_id] = after
        self._notify(collection, doc_id, before, after)
        return True

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._simulate("delete")
        documents = self._collection(collection)
        if doc_id not in documents:
            raise DocumentNotFound(collection, doc_id)
        before = documents.pop(doc_id)
        self._notify(collection, doc_id, before, None)

    async def health_check(self) -> bool:
        """
        Mock health check always returns True.

        In development, we assume the in-memory store is always available.
        """
        logger.debug("Mock: Health check passed")
        return True

    async def close(self) -> None:
        for subscribers in list(self._subscriptions.values()):
            for subscription in list(subscribers):
                subscription.close()
