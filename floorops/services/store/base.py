"""
Document Store Abstract Base Class

Defines the interface contract for the persistent, subscribable document
store that the assignment engine runs on. Both InMemoryStoreAdapter and
SqlStoreAdapter implement these methods, so the repository, ledger and
coordinator behave identically in development and on the floor.

Design Pattern: Strategy Pattern
    - The store is chosen at runtime from ENV_MODE
    - Change feeds are cancellable subscriptions yielding full snapshots
    - Guarded writes go through ``update_if`` (compare-and-set), never a
      read-then-blind-write

Version: 1.0.0
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional


Document = dict[str, Any]
Predicate = Callable[[Document], bool]


@dataclass(frozen=True)
class Increment:
    """
    Field value that the store adds to the current value atomically.

    Example:
        >>> await store.update_if("orders", oid, {"claimed_by": None},
        ...                       {"rejection_count": Increment(1)})
    """
    amount: int = 1


def match_all(document: Document) -> bool:
    return True


def matches_expected(document: Mapping[str, Any], expected: Mapping[str, Any]) -> bool:
    """True when every expected field equals the stored value (missing == None)."""
    return all(document.get(key) == value for key, value in expected.items())


def apply_fields(document: Mapping[str, Any], fields: Mapping[str, Any]) -> Document:
    """Return a copy of ``document`` with ``fields`` merged in and increments resolved."""
    merged = copy.deepcopy(dict(document))
    for key, value in fields.items():
        if isinstance(value, Increment):
            merged[key] = (merged.get(key) or 0) + value.amount
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class Subscription:
    """
    Cancellable live query.

    Iterating yields the full list of matching documents (each carrying its
    ``id``) after every relevant change, starting with the current set.
    Iteration ends once ``close()`` is called or the producer fails; a
    producer failure is re-raised to the consumer.
    """

    _CLOSED = object()

    def __init__(self, collection: str, predicate: Predicate):
        self.collection = collection
        self.predicate = predicate
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._error: Optional[BaseException] = None
        self._on_close: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, snapshot: list[Document]) -> None:
        if not self._closed:
            self._queue.put_nowait(snapshot)

    def fail(self, error: BaseException) -> None:
        """Terminate the feed with an error delivered to the consumer."""
        if self._closed:
            return
        self._error = error
        self._queue.put_nowait(self._CLOSED)
        self._finish()

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        self._on_close.append(callback)

    def close(self) -> None:
        if self._closed:
            return
        self._queue.put_nowait(self._CLOSED)
        self._finish()

    def _finish(self) -> None:
        self._closed = True
        for callback in self._on_close:
            callback()
        self._on_close.clear()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> list[Document]:
        item = await self._queue.get()
        if item is self._CLOSED:
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        return item


class BaseStoreAdapter(ABC):
    """
    Abstract base class for document stores.

    Documents are JSON-compatible dicts. Reads return a copy that carries the
    store-assigned ``id`` key; writes never include it.
    All methods raise ``StoreUnavailable`` on connectivity failures.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the store provider (e.g. "memory", "sql")."""
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Fetch one document, or None when it does not exist."""
        pass

    @abstractmethod
    async def insert(self, collection: str, data: Mapping[str, Any]) -> str:
        """Create a document and return its store-assigned id."""
        pass

    async def append(self, collection: str, data: Mapping[str, Any]) -> str:
        """Append to an append-only collection (audit ledger writes)."""
        return await self.insert(collection, data)

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """
        Merge ``fields`` into a document, last write wins.

        Raises:
            DocumentNotFound: If the document does not exist
        """
        pass

    @abstractmethod
    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        """
        Merge ``fields`` only if every ``expected`` field still holds.

        The check and the write are atomic with respect to other writers.

        Returns:
            bool: True if written, False if the precondition failed

        Raises:
            DocumentNotFound: If the document does not exist
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document (orders only; the ledger never deletes)."""
        pass

    @abstractmethod
    async def query(self, collection: str, predicate: Optional[Predicate] = None) -> list[Document]:
        """Return matching documents in write order."""
        pass

    @abstractmethod
    def subscribe(self, collection: str, predicate: Optional[Predicate] = None) -> Subscription:
        """Open a live query over a collection."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the store."""
        pass

    async def initialize(self) -> None:
        """Prepare backing storage (tables, indexes). Called once at startup."""
        return None

    async def close(self) -> None:
        """Release resources held by the adapter."""
        return None
