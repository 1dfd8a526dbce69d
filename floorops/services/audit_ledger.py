"""
Audit Ledger

Append-only writer/reader of ModificationRecord entries. There is no
update or delete: a correction is another record.

Appends retry on StoreUnavailable. When every attempt fails the state
change it describes has already happened, so the ledger does not roll
anything back; it logs the divergence, keeps it in ``anomalies`` for
administrative review and raises AuditWriteFailed.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

from floorops.core.config import get_settings
from floorops.core.exceptions import AuditWriteFailed, StoreUnavailable
from floorops.schemas import ModificationRecord, ModificationType, utcnow
from floorops.services.store import BaseStoreAdapter, Document

logger = logging.getLogger(__name__)


@dataclass
class AuditAnomaly:
    """A state change whose audit record could not be written."""
    order_id: str
    modification_type: ModificationType
    record: ModificationRecord
    error: str
    attempts: int
    detected_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "modification_type": self.modification_type.value,
            "modified_by": self.record.modified_by,
            "error": self.error,
            "attempts": self.attempts,
            "detected_at": self.detected_at.isoformat(),
        }


class AuditLedger:
    """Shared, append-only history of every order change."""

    def __init__(
        self,
        store: BaseStoreAdapter,
        collection: Optional[str] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        settings = get_settings()
        self.store = store
        self.collection = collection or settings.modifications_collection
        self.retry_attempts = retry_attempts or settings.audit_retry_attempts
        self.retry_delay = settings.audit_retry_delay_seconds if retry_delay is None else retry_delay
        self.anomalies: list[AuditAnomaly] = []

    # =========================================================================
    # WRITE
    # =========================================================================

    async def append(self, record: ModificationRecord) -> ModificationRecord:
        """
        Append one record, retrying transient store failures.

        Returns:
            ModificationRecord: The record with its store-assigned id

        Raises:
            AuditWriteFailed: Every attempt failed; the divergence is recorded
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                record_id = await self.store.append(self.collection, record.to_document())
                logger.debug(
                    f"Audit: {record.modification_type.value} for order {record.order_id} "
                    f"by {record.modified_by} → {record_id}"
                )
                return record.model_copy(update={"id": record_id})
            except StoreUnavailable as e:
                last_error = e
                logger.warning(
                    f"Audit append attempt {attempt}/{self.retry_attempts} failed "
                    f"for order {record.order_id}: {e}"
                )
                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_delay)

        anomaly = AuditAnomaly(
            order_id=record.order_id,
            modification_type=record.modification_type,
            record=record,
            error=str(last_error),
            attempts=self.retry_attempts,
        )
        self.anomalies.append(anomaly)
        logger.error(
            f"🚨 AUDIT DIVERGENCE: order {record.order_id} changed "
            f"({record.modification_type.value} by {record.modified_by_name}) "
            f"but no history was written: {last_error}"
        )
        raise AuditWriteFailed(
            record.order_id, record.modification_type.value, self.retry_attempts, last_error
        )

    # =========================================================================
    # READ
    # =========================================================================

    def _to_records(self, documents: list[Document]) -> list[ModificationRecord]:
        records = []
        for document in documents:
            try:
                records.append(ModificationRecord.model_validate(document))
            except ValidationError as e:
                logger.warning(f"Skipping invalid modification {document.get('id')}: {e}")
        return records

    async def history(self, order_id: str) -> list[ModificationRecord]:
        """All records for one order, oldest first."""
        documents = await self.store.query(
            self.collection, lambda document: document.get("order_id") == order_id
        )
        # sorted() is stable: equal timestamps keep write order
        return sorted(self._to_records(documents), key=lambda r: r.modified_at)

    async def grouped_by_order(self) -> dict[str, list[ModificationRecord]]:
        """Every record grouped by order id, each group oldest first."""
        documents = await self.store.query(self.collection)
        groups: dict[str, list[ModificationRecord]] = defaultdict(list)
        for record in sorted(self._to_records(documents), key=lambda r: r.modified_at):
            groups[record.order_id].append(record)
        return dict(groups)

    async def search(
        self,
        order_id: Optional[str] = None,
        modified_by: Optional[str] = None,
        modification_type: Optional[ModificationType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[ModificationRecord]:
        """Filtered records for history browsing, newest first."""
        records = self._to_records(await self.store.query(self.collection))

        if order_id is not None:
            records = [r for r in records if r.order_id == order_id]
        if modified_by is not None:
            records = [r for r in records if r.modified_by == modified_by]
        if modification_type is not None:
            records = [r for r in records if r.modification_type == modification_type]
        if since is not None:
            records = [r for r in records if r.modified_at >= since]
        if until is not None:
            records = [r for r in records if r.modified_at <= until]

        return sorted(records, key=lambda r: r.modified_at, reverse=True)
