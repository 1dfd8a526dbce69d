"""
SQL Document Store Implementation

Production implementation of the document store on top of SQLAlchemy's
async engine (PostgreSQL via psycopg in production, SQLite in tests).

Behavior:
    - Documents live as JSON in a single ``documents`` table
    - ``update_if`` locks the row (``SELECT ... FOR UPDATE`` where the
      dialect supports it) and writes with a version check, so two waiters
      can never both win a claim
    - Subscriptions poll the collection every ``poll_interval`` seconds and
      push a snapshot only when the matching set changed
    - Every SQLAlchemy error surfaces as StoreUnavailable

Version: 1.0.0
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from floorops.core.config import get_settings
from floorops.core.exceptions import DocumentNotFound, StoreUnavailable
from floorops.database import create_engine, create_session_maker, init_db
from floorops.models import StoredDocument
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


class SqlStoreAdapter(BaseStoreAdapter):
    """
    Real implementation of the document store.

    Example:
        >>> store = SqlStoreAdapter("sqlite+aiosqlite:///floorops.db")
        >>> await store.initialize()
        >>> oid = await store.insert("orders", {"status": "pending"})
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        poll_interval: Optional[float] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        settings = get_settings()

        self.engine = engine or create_engine(database_url)
        self.session_maker = create_session_maker(self.engine)
        self.poll_interval = poll_interval or settings.store_poll_interval_seconds
        self._pollers: set[asyncio.Task] = set()

        logger.info(
            f"SqlStoreAdapter initialized "
            f"(dialect={self.engine.dialect.name}, poll_interval={self.poll_interval}s)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "sql"

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session and translate driver errors into StoreUnavailable."""
        try:
            async with self.session_maker() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"SQL store: {operation} failed: {e}")
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    @staticmethod
    def _to_document(row: StoredDocument) -> Document:
        document = dict(row.data)
        document["id"] = row.doc_id
        return document

    @staticmethod
    def _locate(collection: str, doc_id: str):
        return (
            select(StoredDocument)
            .where(StoredDocument.collection == collection, StoredDocument.doc_id == doc_id)
            .with_for_update()
        )

    async def initialize(self) -> None:
        await init_db(self.engine)

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self._session("get") as session:
            result = await session.execute(
                select(StoredDocument).where(
                    StoredDocument.collection == collection,
                    StoredDocument.doc_id == doc_id,
                )
            )
            row = result.scalar_one_or_none()
            return self._to_document(row) if row is not None else None

    async def query(self, collection: str, predicate: Optional[Predicate] = None) -> list[Document]:
        predicate = predicate or match_all
        async with self._session("query") as session:
            result = await session.execute(
                select(StoredDocument)
                .where(StoredDocument.collection == collection)
                .order_by(StoredDocument.seq)
            )
            documents = [self._to_document(row) for row in result.scalars()]
        return [document for document in documents if predicate(document)]

    def subscribe(self, collection: str, predicate: Optional[Predicate] = None) -> Subscription:
        subscription = Subscription(collection, predicate or match_all)
        task = asyncio.create_task(self._poll(subscription))
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)
        subscription.add_close_callback(task.cancel)
        return subscription

    async def _poll(self, subscription: Subscription) -> None:
        """Re-read the collection and push a snapshot whenever it changed."""
        last_fingerprint: Optional[str] = None
        while not subscription.closed:
            try:
                documents = await self.query(subscription.collection, subscription.predicate)
            except StoreUnavailable as e:
                logger.error(f"SQL store: subscription on {subscription.collection} lost: {e}")
                subscription.fail(e)
                return

            fingerprint = json.dumps(documents, sort_keys=True, default=str)
            if fingerprint != last_fingerprint:
                last_fingerprint = fingerprint
                subscription.push(documents)

            await asyncio.sleep(self.poll_interval)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def insert(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        body = apply_fields({}, data)
        body.pop("id", None)

        async with self._session("insert") as session:
            async with session.begin():
                session.add(
                    StoredDocument(collection=collection, doc_id=doc_id, data=body, version=1)
                )
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        async with self._session("update") as session:
            async with session.begin():
                row = (await session.execute(self._locate(collection, doc_id))).scalar_one_or_none()
                if row is None:
                    raise DocumentNotFound(collection, doc_id)
                row.data = apply_fields(row.data, fields)
                row.version = row.version + 1

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        async with self._session("update_if") as session:
            async with session.begin():
                row = (await session.execute(self._locate(collection, doc_id))).scalar_one_or_none()
                if row is None:
                    raise DocumentNotFound(collection, doc_id)
                if not matches_expected(row.data, expected):
                    logger.debug(f"SQL store: precondition failed on {collection}/{doc_id}")
                    return False

                result = await session.execute(
                    update(StoredDocument)
                    .where(
                        StoredDocument.seq == row.seq,
                        StoredDocument.version == row.version,
                    )
                    .values(data=apply_fields(row.data, fields), version=row.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    logger.debug(f"SQL store: version race lost on {collection}/{doc_id}")
                    return False
        return True

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self._session("delete") as session:
            async with session.begin():
                result = await session.execute(
                    delete(StoredDocument).where(
                        StoredDocument.collection == collection,
                        StoredDocument.doc_id == doc_id,
                    )
                )
                if result.rowcount == 0:
                    raise DocumentNotFound(collection, doc_id)

    async def health_check(self) -> bool:
        """Verify the database answers a trivial query."""
        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"SQL store health check failed: {e}")
            return False

    async def close(self) -> None:
        for task in list(self._pollers):
            task.cancel()
        await asyncio.gather(*self._pollers, return_exceptions=True)
        await self.engine.dispose()
