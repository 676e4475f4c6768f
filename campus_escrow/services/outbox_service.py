#campus_escrow/services/outbox_service.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from campus_escrow.core.config import get_settings
from campus_escrow.core.money import new_id
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.enums import OutboxStatus
from campus_escrow.models.outbox import OutboxMessage

logger = logging.getLogger(__name__)


class OutboxTopic:
    BID_ACCEPTED = "bid.accepted"
    BID_REJECTED = "bid.rejected"
    CONTRACT_CANCELLED = "contract.cancelled"
    MILESTONE_SUBMITTED = "milestone.submitted"
    MILESTONE_REJECTED = "milestone.rejected"
    MILESTONE_RELEASED = "milestone.released"
    DISPUTE_OPENED = "dispute.opened"
    DISPUTE_RESOLVED = "dispute.resolved"


def enqueue(
    tx: StoreTx,
    *,
    topic: str,
    recipient_id: str,
    payload: Dict[str, Any],
    project_id: Optional[str] = None,
) -> OutboxMessage:
    """
    Write a notification envelope inside the business transaction.
    Nothing is delivered until the dispatcher picks it up after commit.
    """
    return tx.set(
        "outbox",
        new_id(),
        {
            "topic": topic,
            "recipient_id": recipient_id,
            "project_id": project_id,
            "payload_json": payload,
            "status": OutboxStatus.pending.value,
            "attempts": 0,
            "created_at": tx.server_timestamp(),
        },
    )


class NotificationSink(Protocol):
    def deliver(self, message: OutboxMessage) -> None: ...


class LoggingNotificationSink:
    """Default sink: notification delivery lives outside the core; log the envelope."""

    def deliver(self, message: OutboxMessage) -> None:
        logger.info(
            "[outbox] deliver %s to=%s project=%s",
            message.topic,
            message.recipient_id,
            message.project_id,
            extra={"payload": message.payload_json},
        )


@dataclass
class DispatchStats:
    delivered: int = 0
    retried: int = 0
    failed: int = 0


class OutboxDispatcher:
    """
    Post-commit delivery loop. Failure tolerant: a sink error never reaches
    the business operation, it only bumps the row's attempt counter.
    """

    def __init__(self, sink: Optional[NotificationSink] = None, *, max_attempts: Optional[int] = None):
        self.sink = sink or LoggingNotificationSink()
        self.max_attempts = max_attempts if max_attempts is not None else get_settings().outbox_max_attempts

    def _pending(self, store: Store, limit: int) -> List[OutboxMessage]:
        with store.read() as tx:
            return tx.query("outbox", status=OutboxStatus.pending.value, order_by="created_at", limit=limit)

    def _mark(self, store: Store, message_id: str, patch_for) -> None:
        def _op(tx: StoreTx) -> None:
            row = tx.get("outbox", message_id)
            if row is None or row.status != OutboxStatus.pending.value:
                return
            tx.update("outbox", message_id, patch_for(row, tx))

        store.run(_op, op="outbox_mark")

    def dispatch_pending(self, store: Store, *, limit: int = 100) -> DispatchStats:
        stats = DispatchStats()

        for message in self._pending(store, limit):
            try:
                self.sink.deliver(message)
            except Exception as exc:
                attempts = message.attempts + 1
                exhausted = attempts >= self.max_attempts
                logger.warning(
                    "[outbox] delivery failed id=%s topic=%s attempt=%d: %s",
                    message.id, message.topic, attempts, exc,
                )
                self._mark(
                    store,
                    message.id,
                    lambda row, tx, err=str(exc): {
                        "attempts": row.attempts + 1,
                        "last_error": err[:500],
                        "status": (
                            OutboxStatus.failed.value
                            if row.attempts + 1 >= self.max_attempts
                            else OutboxStatus.pending.value
                        ),
                    },
                )
                if exhausted:
                    stats.failed += 1
                else:
                    stats.retried += 1
                continue

            self._mark(
                store,
                message.id,
                lambda row, tx: {
                    "attempts": row.attempts + 1,
                    "status": OutboxStatus.delivered.value,
                    "delivered_at": tx.server_timestamp(),
                    "last_error": None,
                },
            )
            stats.delivered += 1

        return stats

    def dispatch_forever(
        self,
        store: Store,
        *,
        stop: threading.Event,
        interval_seconds: Optional[float] = None,
        on_stats: Optional[Callable[[DispatchStats], None]] = None,
    ) -> None:
        """Drain the outbox every `interval_seconds` until `stop` is set."""
        interval = interval_seconds if interval_seconds is not None else get_settings().outbox_dispatch_interval_seconds
        while not stop.is_set():
            started = time.monotonic()
            try:
                stats = self.dispatch_pending(store)
                if stats.delivered or stats.failed:
                    logger.info(
                        "[outbox] pass delivered=%d retried=%d failed=%d",
                        stats.delivered, stats.retried, stats.failed,
                    )
                if on_stats is not None:
                    on_stats(stats)
            except Exception:
                logger.exception("[outbox] dispatch pass failed")
            stop.wait(max(0.0, interval - (time.monotonic() - started)))

    def list_for_recipient(self, store: Store, recipient_id: str) -> List[OutboxMessage]:
        with store.read() as tx:
            return tx.query("outbox", recipient_id=recipient_id, order_by="created_at")
