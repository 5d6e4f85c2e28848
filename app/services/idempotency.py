"""
Idempotency Service
Deduplicates side-effecting operations within a time window using persisted attempt records
"""

import asyncio
import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.models.idempotency_record import IdempotencyRecord, IdempotencyStatus
from app.services.errors import OperationFailed, OperationTimeout, PreviousFailure
from app.services.monitoring.error_tracking import add_breadcrumb

logger = structlog.get_logger(__name__)


def canonical_json(payload: Any) -> str:
    """
    Serialize payload with object keys sorted at every nesting level.

    Structurally equal payloads map to the same string regardless of key order.
    """
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_request_hash(payload: Any) -> str:
    """
    Deterministic content hash of a request payload.

    Args:
        payload: JSON-like request payload

    Returns:
        SHA-256 hex digest of the canonical serialization
    """
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def generate_idempotency_key(operation: str, payload: Any) -> str:
    """
    Generate a unique key for one attempt of an operation.

    Format: {operation}_{content_hash[:16]}_{epoch_ms}_{nonce}

    The key identifies the attempt, not the content: two attempts for the
    same payload get different keys. Content duplicates are detected via
    request_hash instead.
    """
    content_hash = compute_request_hash(payload)
    epoch_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{operation}_{content_hash[:16]}_{epoch_ms}_{uuid.uuid4().hex[:8]}"


class IdempotentOperation(str, Enum):
    """Side-effecting voice platform operations routed through the coordinator."""
    CREATE_AGENT = "retell_create_agent"
    START_CALL = "retell_start_call"
    UPDATE_AGENT = "retell_update_agent"


@dataclass(frozen=True)
class OperationPolicy:
    window_minutes: int
    retry_on_failure: bool


OPERATION_POLICIES = {
    IdempotentOperation.CREATE_AGENT: OperationPolicy(window_minutes=10, retry_on_failure=True),
    # A failed call start must be re-requested explicitly, never silently redialed
    IdempotentOperation.START_CALL: OperationPolicy(window_minutes=1, retry_on_failure=False),
    IdempotentOperation.UPDATE_AGENT: OperationPolicy(window_minutes=5, retry_on_failure=True),
}


class IdempotencyStore:
    """
    SQLAlchemy-backed persistence for idempotency records.

    Each call runs in its own session so record writes never join the
    caller's transaction. Write failures are logged and reported through the
    return value; they never raise.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Args:
            session_factory: SQLAlchemy sessionmaker (not session - creates independent transactions)
        """
        self.session_factory = session_factory
        self.logger = logger.bind(service="idempotency_store")

    def find_recent(
        self,
        operation: str,
        request_hash: str,
        since: datetime
    ) -> Optional[IdempotencyRecord]:
        """Most recent record for (operation, request_hash) created at or after `since`."""
        session: Session = self.session_factory()
        try:
            return session.query(IdempotencyRecord).filter(
                IdempotencyRecord.operation == operation,
                IdempotencyRecord.request_hash == request_hash,
                IdempotencyRecord.created_at >= since
            ).order_by(
                IdempotencyRecord.created_at.desc(),
                IdempotencyRecord.id.desc()
            ).first()
        except SQLAlchemyError as e:
            self.logger.warning(
                "idempotency_lookup_failed",
                operation=operation,
                request_hash=request_hash,
                error=str(e)
            )
            return None
        finally:
            session.close()

    def get_by_key(self, key: str) -> Optional[IdempotencyRecord]:
        session: Session = self.session_factory()
        try:
            return session.query(IdempotencyRecord).filter(
                IdempotencyRecord.key == key
            ).first()
        except SQLAlchemyError as e:
            self.logger.warning("idempotency_key_lookup_failed", key=key, error=str(e))
            return None
        finally:
            session.close()

    def create_pending(
        self,
        key: str,
        operation: str,
        request_hash: str,
        ttl: timedelta
    ) -> bool:
        """
        Insert a pending record.

        Returns:
            True if stored, False if the write failed (including a key conflict)
        """
        session: Session = self.session_factory()
        try:
            now = datetime.now(timezone.utc)
            session.add(IdempotencyRecord(
                key=key,
                operation=operation,
                request_hash=request_hash,
                status=IdempotencyStatus.PENDING,
                created_at=now,
                expires_at=now + ttl
            ))
            session.commit()
            self.logger.info(
                "idempotency_record_pending",
                key=key,
                operation=operation,
                expires_at=(now + ttl).isoformat()
            )
            return True
        except SQLAlchemyError as e:
            self.logger.warning("idempotency_pending_write_failed", key=key, error=str(e))
            session.rollback()
            return False
        finally:
            session.close()

    def mark_completed(self, key: str, response: Any) -> bool:
        return self._transition(key, IdempotencyStatus.COMPLETED, response=response)

    def mark_failed(self, key: str, error_message: Optional[str] = None) -> bool:
        return self._transition(key, IdempotencyStatus.FAILED, error_message=error_message)

    def _transition(
        self,
        key: str,
        status: str,
        response: Any = None,
        error_message: Optional[str] = None
    ) -> bool:
        """Move a pending record to a terminal state. Terminal records are never reopened."""
        session: Session = self.session_factory()
        try:
            updated = session.query(IdempotencyRecord).filter(
                IdempotencyRecord.key == key,
                IdempotencyRecord.status == IdempotencyStatus.PENDING
            ).update(
                {
                    IdempotencyRecord.status: status,
                    IdempotencyRecord.response: response,
                    IdempotencyRecord.error_message: error_message,
                },
                synchronize_session=False
            )
            session.commit()

            if updated == 0:
                self.logger.warning("idempotency_transition_skipped", key=key, status=status)
                return False

            self.logger.info("idempotency_record_transitioned", key=key, status=status)
            return True
        except (SQLAlchemyError, TypeError, ValueError) as e:
            # TypeError/ValueError: response is not JSON-serializable
            self.logger.warning(
                "idempotency_transition_failed",
                key=key,
                status=status,
                error=str(e)
            )
            session.rollback()
            return False
        finally:
            session.close()

    def delete_expired(self, now: datetime) -> int:
        """
        Delete all records whose expires_at has passed.

        Returns:
            Number of records deleted (0 on failure)
        """
        session: Session = self.session_factory()
        try:
            deleted_count = session.query(IdempotencyRecord).filter(
                IdempotencyRecord.expires_at < now
            ).delete(synchronize_session=False)
            session.commit()
            return deleted_count
        except SQLAlchemyError as e:
            self.logger.error("idempotency_cleanup_failed", error=str(e))
            session.rollback()
            return 0
        finally:
            session.close()


class IdempotencyCoordinator:
    """
    Ensures an (operation, payload) pair runs its side effect at most once per dedup window.

    Flow per execute():
    1. Hash the canonical payload
    2. completed record in window -> return stored response, no remote call
    3. failed record in window and retry disabled -> PreviousFailure
    4. pending record in window -> poll until it resolves (bounded wait)
    5. otherwise -> write pending, call, write completed/failed

    Record writes are best-effort bookkeeping: when the store is unavailable
    deduplication degrades to none, but the caller still gets the call's result.
    """

    def __init__(
        self,
        store: IdempotencyStore,
        poll_interval_seconds: float = 1.0,
        max_wait_seconds: float = 30.0,
        window_minutes: int = 5,
        ttl_hours: int = 24
    ):
        self.store = store
        self.poll_interval_seconds = poll_interval_seconds
        self.max_wait_seconds = max_wait_seconds
        self.window_minutes = window_minutes
        self.ttl = timedelta(hours=ttl_hours)
        self.logger = logger.bind(service="idempotency")

    @classmethod
    def from_settings(cls, session_factory: sessionmaker) -> "IdempotencyCoordinator":
        from app.config import settings

        return cls(
            store=IdempotencyStore(session_factory),
            poll_interval_seconds=settings.idempotency_poll_interval_seconds,
            max_wait_seconds=settings.idempotency_max_wait_seconds,
            window_minutes=settings.idempotency_window_minutes,
            ttl_hours=settings.idempotency_ttl_hours,
        )

    def check_existing(
        self,
        operation: str,
        request_hash: str,
        window_minutes: Optional[int] = None
    ) -> Optional[IdempotencyRecord]:
        """
        Most recent matching record created within the window, or None. No side effects.
        """
        window = self.window_minutes if window_minutes is None else window_minutes
        since = datetime.now(timezone.utc) - timedelta(minutes=window)
        return self.store.find_recent(operation, request_hash, since)

    async def execute(
        self,
        operation: Union[IdempotentOperation, str],
        request_fn: Callable[[], Awaitable[Any]],
        payload: Any,
        window_minutes: Optional[int] = None,
        retry_on_failure: bool = True
    ) -> Any:
        """
        Run request_fn at most once per dedup window for this (operation, payload).

        Args:
            operation: Logical operation name
            request_fn: Zero-argument callable returning an awaitable; the side effect
            payload: Request payload used for content deduplication
            window_minutes: Dedup window (defaults to the coordinator's)
            retry_on_failure: Whether a failed attempt in the window may be retried

        Returns:
            The call's response, or the stored response of an earlier attempt

        Raises:
            PreviousFailure: Earlier attempt failed and retry_on_failure is False
            OperationFailed: The in-flight attempt being waited on failed
            OperationTimeout: The in-flight attempt did not resolve in time
            Exception: Whatever request_fn raised
        """
        operation_name = operation.value if isinstance(operation, IdempotentOperation) else operation
        request_hash = compute_request_hash(payload)
        log = self.logger.bind(operation=operation_name, request_hash=request_hash[:16])

        existing = self.check_existing(operation_name, request_hash, window_minutes)

        if existing is not None:
            if existing.status == IdempotencyStatus.COMPLETED:
                log.info("idempotency_cache_hit", key=existing.key)
                return existing.response

            if existing.status == IdempotencyStatus.FAILED and not retry_on_failure:
                log.info("idempotency_previous_failure", key=existing.key)
                raise PreviousFailure(operation_name, existing.key)

            if existing.status == IdempotencyStatus.PENDING:
                log.info("idempotency_waiting_for_pending", key=existing.key)
                return await self.wait_for_completion(existing.key)

        key = generate_idempotency_key(operation_name, payload)
        log = log.bind(key=key)

        if not self.store.create_pending(key, operation_name, request_hash, self.ttl):
            log.warning("idempotency_unguarded_execution")

        try:
            result = await request_fn()
        except Exception as e:
            self.store.mark_failed(key, str(e))
            add_breadcrumb(
                category="idempotency",
                message=f"{operation_name} failed",
                level="error",
                data={"key": key, "error": str(e)}
            )
            log.error("idempotent_operation_failed", error=str(e))
            raise

        self.store.mark_completed(key, result)
        log.info("idempotent_operation_completed")
        return result

    async def execute_operation(
        self,
        operation: IdempotentOperation,
        request_fn: Callable[[], Awaitable[Any]],
        payload: Any
    ) -> Any:
        """execute() with the window and retry policy registered for the operation."""
        policy = OPERATION_POLICIES[operation]
        return await self.execute(
            operation,
            request_fn,
            payload,
            window_minutes=policy.window_minutes,
            retry_on_failure=policy.retry_on_failure
        )

    async def wait_for_completion(self, key: str) -> Any:
        """
        Poll a pending record until it reaches a terminal state.

        Raises:
            OperationFailed: Record became failed
            OperationTimeout: max_wait_seconds elapsed first
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_wait_seconds

        while loop.time() < deadline:
            record = self.store.get_by_key(key)

            if record is not None:
                if record.status == IdempotencyStatus.COMPLETED:
                    self.logger.info("idempotency_wait_completed", key=key)
                    return record.response

                if record.status == IdempotencyStatus.FAILED:
                    self.logger.warning("idempotency_wait_failed", key=key)
                    raise OperationFailed(key, record.error_message)

            await asyncio.sleep(self.poll_interval_seconds)

        self.logger.warning("idempotency_wait_timed_out", key=key, max_wait_seconds=self.max_wait_seconds)
        raise OperationTimeout(
            f"Operation timed out: {key}",
            details={"key": key, "max_wait_seconds": self.max_wait_seconds}
        )

    def cleanup_expired(self) -> int:
        """
        Delete expired records. Runs from the scheduler, never on the request path.

        Returns:
            Number of records deleted
        """
        deleted_count = self.store.delete_expired(datetime.now(timezone.utc))
        self.logger.info("idempotency_cleanup_complete", deleted_count=deleted_count)
        return deleted_count
