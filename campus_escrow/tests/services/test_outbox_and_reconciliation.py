import threading

from conftest import contract_for, make_user, query

from campus_escrow.models.enums import OutboxStatus
from campus_escrow.services.escrow_service import EscrowService
from campus_escrow.services.outbox_service import OutboxDispatcher, enqueue
from campus_escrow.services.reconciliation_service import ReconciliationService


class RecordingSink:
    def __init__(self):
        self.delivered = []

    def deliver(self, message):
        self.delivered.append((message.topic, message.recipient_id))


class BrokenSink:
    def deliver(self, message):
        raise ConnectionError("mail relay unreachable")


def test_dispatcher_delivers_pending_messages(store, client_user, student):
    contract_for(store, client_user.id, student.id, price=300)
    sink = RecordingSink()

    stats = OutboxDispatcher(sink).dispatch_pending(store)

    assert stats.delivered == 1
    assert sink.delivered == [("bid.accepted", student.id)]
    rows = query(store, "outbox")
    assert [r.status for r in rows] == [OutboxStatus.delivered.value]
    assert rows[0].delivered_at is not None

    # nothing left to send
    assert OutboxDispatcher(sink).dispatch_pending(store).delivered == 0


def test_dispatcher_gives_up_after_max_attempts(store, client_user, student):
    contract_for(store, client_user.id, student.id, price=300)
    dispatcher = OutboxDispatcher(BrokenSink(), max_attempts=2)

    first = dispatcher.dispatch_pending(store)
    assert (first.retried, first.failed) == (1, 0)
    row = query(store, "outbox")[0]
    assert row.status == OutboxStatus.pending.value
    assert row.attempts == 1
    assert "unreachable" in row.last_error

    second = dispatcher.dispatch_pending(store)
    assert (second.retried, second.failed) == (0, 1)
    assert query(store, "outbox")[0].status == OutboxStatus.failed.value
    assert dispatcher.dispatch_pending(store).failed == 0


def test_sweep_is_clean_after_normal_activity(store, client_user, student):
    project_id, _ = contract_for(store, client_user.id, student.id, price=300)
    EscrowService().deposit(store, project_id=project_id, client_id=client_user.id, amount=300)

    report = ReconciliationService().sweep(store)

    assert report.ok
    assert report.transactions_scanned == 1
    assert report.underfunded == []


def test_sweep_reports_drift_without_fixing_it(store, client_user):
    drifted = make_user(store, "student", wallet=50)

    def _tamper(tx):
        tx.update("users", drifted.id, {"wallet_balance": 75})

    store.run(_tamper, op="test.tamper")

    report = ReconciliationService().sweep(store)

    assert not report.ok
    assert len(report.mismatches) == 1
    mismatch = report.mismatches[0]
    assert mismatch.account == f"user:{drifted.id}"
    assert (mismatch.stored, mismatch.computed, mismatch.difference) == (75, 50, 25)
    assert ReconciliationService().sweep(store).mismatches == report.mismatches


def test_sweep_flags_underfunded_projects(store, client_user, student):
    project_id, _ = contract_for(store, client_user.id, student.id, price=500)
    EscrowService().deposit(store, project_id=project_id, client_id=client_user.id, amount=200)

    report = ReconciliationService().sweep(store)

    assert report.ok
    assert [(u.project_id, u.escrow_balance, u.outstanding) for u in report.underfunded] == [(project_id, 200, 500)]


def test_sweep_forever_stops_on_event(store):
    stop = threading.Event()
    reports = []

    def _on_report(report):
        reports.append(report)
        stop.set()

    ReconciliationService().sweep_forever(store, stop=stop, interval_seconds=0, on_report=_on_report)

    assert len(reports) == 1
    assert reports[0].ok


def _notify(store, recipient_id, topic):
    store.run(
        lambda tx: enqueue(tx, topic=topic, recipient_id=recipient_id, payload={}),
        op="test.enqueue",
    )


def test_dispatch_pending_respects_the_limit(store, student):
    for topic in ("milestone.rejected", "milestone.released", "dispute.resolved"):
        _notify(store, student.id, topic)
    sink = RecordingSink()

    stats = OutboxDispatcher(sink).dispatch_pending(store, limit=2)

    assert stats.delivered == 2
    assert sink.delivered == [("milestone.rejected", student.id), ("milestone.released", student.id)]
    pending = query(store, "outbox", status=OutboxStatus.pending.value)
    assert [m.topic for m in pending] == ["dispute.resolved"]


def test_dispatch_forever_drains_until_stopped(store, student):
    _notify(store, student.id, "milestone.released")
    sink = RecordingSink()
    stop = threading.Event()
    passes = []

    def _on_stats(stats):
        passes.append(stats)
        stop.set()

    OutboxDispatcher(sink).dispatch_forever(store, stop=stop, interval_seconds=0, on_stats=_on_stats)

    assert len(passes) == 1
    assert passes[0].delivered == 1
    assert sink.delivered == [("milestone.released", student.id)]
