"""
IdempotencyRecord Model
Tracks one attempt of a side-effecting operation for deduplication
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index, CheckConstraint
from app.database import Base


class IdempotencyStatus:
    """Record lifecycle states: (none) -> pending -> {completed | failed}."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (PENDING, COMPLETED, FAILED)


class IdempotencyRecord(Base):
    """
    One attempt of an idempotent operation.

    Lookup paths:
    - (operation, request_hash, created_at): duplicate detection inside the dedup window
    - key: wait-for-completion polling and state transitions

    Rows past expires_at are removed by the scheduled cleanup job.
    """
    __tablename__ = "idempotency_records"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Attempt identity
    key = Column(String(255), unique=True, nullable=False, index=True)
    operation = Column(String(100), nullable=False)
    request_hash = Column(String(64), nullable=False)

    # Lifecycle
    status = Column(String(20), nullable=False, default=IdempotencyStatus.PENDING)
    response = Column(JSON, nullable=True)  # Present only when completed
    error_message = Column(Text, nullable=True)  # Present only when failed

    # Timestamps (set by the coordinator, not the server clock)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="idempotency_status_check"
        ),
        Index('ix_idempotency_operation_hash', 'operation', 'request_hash'),
        Index('ix_idempotency_records_expires_at', 'expires_at'),
    )

    def __repr__(self):
        return (
            f"<IdempotencyRecord(key='{self.key}', operation='{self.operation}', "
            f"status='{self.status}')>"
        )
