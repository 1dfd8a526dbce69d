"""
SQLAlchemy Database Models

The SQL store keeps every collection (orders, order_modifications) in one
document table. ``version`` increments on every write and backs the
compare-and-set used by guarded transitions.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from floorops.database import Base


class StoredDocument(Base):
    """
    One JSON document in a named collection.

    ``seq`` preserves write order, which is the order ``query`` returns.
    """
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),
    )

    # Primary Key
    seq = Column(Integer, primary_key=True, autoincrement=True)

    # =========================================================================
    # IDENTITY
    # =========================================================================
    collection = Column(String(64), nullable=False, index=True)
    doc_id = Column(String(40), nullable=False, index=True)

    # =========================================================================
    # BODY
    # =========================================================================
    data = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<StoredDocument {self.collection}/{self.doc_id} v{self.version}>"
