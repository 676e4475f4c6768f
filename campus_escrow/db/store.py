# campus_escrow/db/store.py
from __future__ import annotations

import logging
import random
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from campus_escrow.core.errors import (
    ConflictError,
    ConflictExceededError,
    InvalidStateError,
    InvariantViolationError,
    NotFoundError,
    StoreTimeoutError,
)
from campus_escrow.db.base import Base
from campus_escrow.models import (
    AuditLogRecord,
    Bid,
    Contract,
    Dispute,
    LedgerTransaction,
    Milestone,
    OutboxMessage,
    Project,
    Team,
    TeamMember,
    User,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

COLLECTIONS: Dict[str, Type[Base]] = {
    "users": User,
    "teams": Team,
    "team_members": TeamMember,
    "projects": Project,
    "bids": Bid,
    "contracts": Contract,
    "milestones": Milestone,
    "transactions": LedgerTransaction,
    "disputes": Dispute,
    "outbox": OutboxMessage,
    "audit_log": AuditLogRecord,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _model(collection: str) -> Type[Base]:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}")


def _apply_column_defaults(model: Type[Base], values: Dict[str, Any]) -> None:
    """
    Python-side defaults are normally applied at flush. Documents created in a
    Tx are read back (and incremented) before that, so fill them eagerly.
    """
    for col in model.__table__.columns:
        if col.key in values or col.default is None:
            continue
        if col.key == "version":
            continue
        if col.default.is_scalar:
            values[col.key] = col.default.arg
        elif col.default.is_callable:
            values[col.key] = col.default.arg(None)


class StoreTx:
    """
    One logical transaction over the document collections.

    Conflict detection is optimistic: every document carries a `version`
    column (mapper version_id_col). Writes against a stale version fail at
    flush; documents only read are re-validated at commit.
    """

    def __init__(self, session: Session, *, read_only: bool = False):
        self.session = session
        self.read_only = read_only
        self._read_set: Dict[Tuple[str, str], int] = {}
        # the session identity map is weak; a dropped document must not be
        # reloaded at a newer version later in the same Tx
        self._docs: Dict[Tuple[str, str], Any] = {}
        self._closed = False

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def _track(self, collection: str, doc: Any) -> None:
        key = (collection, doc.id)
        self._docs.setdefault(key, doc)
        if key not in self._read_set and doc.version is not None:
            self._read_set[key] = doc.version

    def get(self, collection: str, doc_id: str) -> Optional[Any]:
        model = _model(collection)
        doc = self._docs.get((collection, doc_id))
        if doc is not None:
            return doc
        doc = self.session.get(model, doc_id)
        if doc is not None:
            self._track(collection, doc)
        return doc

    def require(self, collection: str, doc_id: str, *, label: Optional[str] = None) -> Any:
        doc = self.get(collection, doc_id)
        if doc is None:
            raise NotFoundError(f"{label or collection.rstrip('s').capitalize()} not found.")
        return doc

    def query(
        self,
        collection: str,
        *,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        **filters: Any,
    ) -> List[Any]:
        model = _model(collection)
        stmt = select(model)
        for field, value in filters.items():
            column = getattr(model, field)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)
        if order_by:
            stmt = stmt.order_by(getattr(model, order_by))
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = list(self.session.execute(stmt).scalars().all())
        for row in rows:
            self._track(collection, row)
        return rows

    # ─────────────────────────────────────────────
    # WRITES
    # ─────────────────────────────────────────────

    def _ensure_writable(self) -> None:
        if self.read_only:
            raise InvalidStateError("Read-only snapshot cannot be written.")

    def set(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> Any:
        self._ensure_writable()
        model = _model(collection)
        values = dict(doc)
        values["id"] = doc_id
        if "created_at" in model.__table__.columns and values.get("created_at") is None:
            values["created_at"] = self.server_timestamp()
        _apply_column_defaults(model, values)
        row = model(**values)
        self.session.add(row)
        return row

    def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> Any:
        self._ensure_writable()
        row = self.require(collection, doc_id)
        for field, value in patch.items():
            setattr(row, field, value)
        if hasattr(row, "updated_at") and "updated_at" not in patch:
            row.updated_at = self.server_timestamp(row)
        return row

    def increment(self, collection: str, doc_id: str, field: str, delta: int) -> int:
        self._ensure_writable()
        row = self.require(collection, doc_id)
        value = (getattr(row, field) or 0) + delta
        setattr(row, field, value)
        if hasattr(row, "updated_at"):
            row.updated_at = self.server_timestamp(row)
        return value

    def delete(self, collection: str, doc_id: str) -> None:
        self._ensure_writable()
        row = self.require(collection, doc_id)
        self._docs.pop((collection, doc_id), None)
        self.session.delete(row)

    def server_timestamp(self, doc: Optional[Any] = None) -> datetime:
        """Strictly greater than the document's last committed timestamp."""
        now = _now()
        last = getattr(doc, "updated_at", None) if doc is not None else None
        if last is not None:
            last = _aware(last)
            if now <= last:
                now = last + timedelta(microseconds=1)
        return now

    # ─────────────────────────────────────────────
    # COMPLETION
    # ─────────────────────────────────────────────

    def _validate_read_set(self) -> None:
        dirty = {id(obj) for obj in self.session.dirty} | {id(obj) for obj in self.session.deleted}
        for (collection, doc_id), seen_version in self._read_set.items():
            model = _model(collection)
            obj = self._docs.get((collection, doc_id))
            if obj is not None and id(obj) in dirty:
                # the UPDATE / DELETE checks the loaded version; it must be the one read
                current = obj.version
            else:
                current = self.session.execute(
                    select(model.version).where(model.id == doc_id)
                ).scalar_one_or_none()
            if current != seen_version:
                raise ConflictError(
                    f"{collection}/{doc_id} changed since it was read.",
                    details={"collection": collection, "id": doc_id},
                )

    def commit(self) -> None:
        if self.read_only:
            raise InvalidStateError("Read-only snapshot cannot be committed.")
        try:
            self._validate_read_set()
            self.session.commit()
        except ConflictError:
            self.rollback()
            raise
        except StaleDataError as exc:
            self.rollback()
            raise ConflictError("Concurrent modification detected.") from exc
        except IntegrityError as exc:
            self.rollback()
            raise ConflictError("Uniqueness conflict on commit.") from exc
        except OperationalError as exc:
            self.rollback()
            raise StoreTimeoutError("Commit outcome unknown.") from exc

    def rollback(self) -> None:
        try:
            self.session.rollback()
        except OperationalError:
            logger.warning("[store] rollback failed; discarding session", exc_info=True)

    def close(self) -> None:
        if not self._closed:
            self.session.close()
            self._closed = True


class Store:
    """
    Transactional persistence for the escrow core.

    `run` is the only write path used by services: it executes the callable
    inside a fresh StoreTx, commits, and retries on optimistic conflicts
    with exponential backoff.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        max_retries: int = 5,
        base_delay: float = 0.02,
        max_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def _session(self) -> Session:
        # documents stay readable after commit / close
        return self.session_factory(expire_on_commit=False)

    def begin(self) -> StoreTx:
        return StoreTx(self._session())

    @contextmanager
    def read(self) -> Iterator[StoreTx]:
        """Read-only snapshot; closing detaches the loaded documents intact."""
        tx = StoreTx(self._session(), read_only=True)
        try:
            yield tx
        finally:
            tx.close()

    def ping(self) -> bool:
        """Cheap database round trip for the health route."""
        session = self._session()
        try:
            session.execute(text("SELECT 1"))
            return True
        except OperationalError:
            logger.warning("[store] ping failed", exc_info=True)
            return False
        finally:
            session.close()

    def _backoff(self, attempt: int) -> None:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        # jitter against lock-step retries
        jitter = random.uniform(0.1, 0.3) * delay
        self._sleep(delay + jitter)

    def run(self, fn: Callable[[StoreTx], T], *, op: str, project_id: Optional[str] = None) -> T:
        last_exc: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):  # +1 for initial attempt
            if attempt > 0:
                self._backoff(attempt)
                logger.info(
                    "[store] retrying %s (attempt %d/%d) project=%s",
                    op, attempt + 1, self.max_retries + 1, project_id,
                )

            tx = self.begin()
            try:
                result = fn(tx)
                tx.commit()
                return result
            except (ConflictError, StoreTimeoutError) as exc:
                tx.rollback()
                last_exc = exc
                logger.warning("[store] %s on %s: %s", exc.__class__.__name__, op, exc.message)
            except StaleDataError as exc:
                # raised by a flush inside fn
                tx.rollback()
                last_exc = exc
                logger.warning("[store] stale write during %s", op)
            except InvariantViolationError as exc:
                tx.rollback()
                logger.critical(
                    "[store] invariant violation during %s project=%s: %s",
                    op, exc.project_id or project_id, exc.message,
                )
                self._quarantine(exc.project_id or project_id, op=op, error=exc)
                raise
            except Exception:
                tx.rollback()
                raise
            finally:
                tx.close()

        raise ConflictExceededError(
            f"{op} could not complete after {self.max_retries + 1} attempts; safe to retry.",
        ) from last_exc

    def _quarantine(self, project_id: Optional[str], *, op: str, error: InvariantViolationError) -> None:
        if not project_id:
            return
        # imported lazily: services depend on the store, not the other way round
        from campus_escrow.services.invariants import quarantine_project

        tx = self.begin()
        try:
            quarantine_project(tx, project_id, reason=f"{op}: {error.message}", details=error.details)
            tx.commit()
        except Exception:
            tx.rollback()
            logger.exception("[store] failed to quarantine project=%s", project_id)
        finally:
            tx.close()
