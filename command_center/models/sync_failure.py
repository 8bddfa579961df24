"""
SyncFailure model: the retry queue for upline walks that did not reach the master.

One row per failed walk. The row keeps the origin's copy of the record so a
retry can re-walk the whole chain; hops that already succeeded are re-upserted
on (original_id, synced_from) and do not duplicate.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, Index
from sqlalchemy.sql import func

from command_center.database import Base

PENDING = 'pending'
RESOLVED = 'resolved'
ABANDONED = 'abandoned'


class SyncFailure(Base):
    __tablename__ = 'sync_failures'

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(Text, nullable=False)            # lead / booking
    origin = Column(Text, nullable=False)          # registry key the record was captured in
    record_id = Column(Text, nullable=True)        # id in the origin database
    failed_db = Column(Text, nullable=True)        # first hop that failed
    record = Column(JSON, nullable=False)
    error = Column(Text, default='')
    attempts = Column(Integer, default=0)
    status = Column(Text, nullable=False, default=PENDING)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('ix_sync_failures_status_next', 'status', 'next_attempt_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'origin': self.origin,
            'record_id': self.record_id,
            'failed_db': self.failed_db,
            'error': self.error,
            'attempts': self.attempts,
            'status': self.status,
            'next_attempt_at': self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
