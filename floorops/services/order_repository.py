"""
Order Repository

Typed access to Order documents. Raw store dicts are validated into
``Order`` models here, so nothing downstream ever handles an unchecked
document shape.
"""

import logging
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from floorops.core.config import get_settings
from floorops.core.exceptions import DocumentNotFound, InvalidDocument, OrderNotFound
from floorops.schemas import ACTIVE_STATUSES, Order, OrderStatus
from floorops.services.store import BaseStoreAdapter, Document, Subscription

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = {status.value for status in ACTIVE_STATUSES}


def is_active_document(document: Document) -> bool:
    """Live order set: pending, preparing or ready."""
    return document.get("status") in _ACTIVE_VALUES


class OrderStream:
    """
    Live stream of the active order set.

    Wraps a store subscription and yields validated ``Order`` lists;
    documents that fail validation are logged and left out of the snapshot.
    """

    def __init__(self, subscription: Subscription, repository: "OrderRepository"):
        self._subscription = subscription
        self._repository = repository

    @property
    def closed(self) -> bool:
        return self._subscription.closed

    def close(self) -> None:
        self._subscription.close()

    def __aiter__(self) -> "OrderStream":
        return self

    async def __anext__(self) -> list[Order]:
        documents = await self._subscription.__anext__()
        return self._repository.to_orders(documents)


class OrderRepository:
    """Read/write access to the orders collection."""

    def __init__(self, store: BaseStoreAdapter, collection: Optional[str] = None):
        self.store = store
        self.collection = collection or get_settings().orders_collection

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def to_order(self, document: Document) -> Order:
        try:
            return Order.model_validate(document)
        except ValidationError as e:
            raise InvalidDocument(self.collection, document.get("id"), str(e)) from e

    def to_orders(self, documents: list[Document]) -> list[Order]:
        orders = []
        for document in documents:
            try:
                orders.append(self.to_order(document))
            except InvalidDocument as e:
                logger.warning(f"Skipping invalid order document: {e}")
        return orders

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, order_id: str) -> Order:
        """
        Fetch one order.

        Raises:
            OrderNotFound: If no such order exists
            InvalidDocument: If the stored document is malformed
        """
        document = await self.store.get(self.collection, order_id)
        if document is None:
            raise OrderNotFound(order_id)
        return self.to_order(document)

    async def list_active(self) -> list[Order]:
        documents = await self.store.query(self.collection, is_active_document)
        return self.to_orders(documents)

    async def list_delivered(self) -> list[Order]:
        documents = await self.store.query(
            self.collection,
            lambda document: document.get("status") == OrderStatus.DELIVERED.value,
        )
        return self.to_orders(documents)

    def subscribe_active(self) -> OrderStream:
        """Open a live query over the active order set."""
        return OrderStream(self.store.subscribe(self.collection, is_active_document), self)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create(self, fields: Mapping[str, Any]) -> Order:
        """Validate a new order body, store it and return it with its id."""
        try:
            draft = Order.model_validate({**fields, "id": "new"})
        except ValidationError as e:
            raise InvalidDocument(self.collection, None, str(e)) from e

        order_id = await self.store.insert(self.collection, draft.to_document())
        return draft.model_copy(update={"id": order_id})

    async def update(self, order_id: str, fields: Mapping[str, Any]) -> None:
        try:
            await self.store.update(self.collection, order_id, fields)
        except DocumentNotFound as e:
            raise OrderNotFound(order_id) from e

    async def update_if(
        self,
        order_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        """Conditional write; False when ``expected`` no longer holds."""
        try:
            return await self.store.update_if(self.collection, order_id, expected, fields)
        except DocumentNotFound as e:
            raise OrderNotFound(order_id) from e

    async def delete(self, order_id: str) -> None:
        try:
            await self.store.delete(self.collection, order_id)
        except DocumentNotFound as e:
            raise OrderNotFound(order_id) from e
