import pytest

from conftest import contract_for, deliver, make_open_project, make_user, query, read, submit_bid

from campus_escrow.core.errors import (
    ForbiddenError,
    InsufficientFundsError,
    InvalidStateError,
    StoreTimeoutError,
)
from campus_escrow.db.store import StoreTx
from campus_escrow.models.enums import (
    ContractStatus,
    MilestoneStatus,
    ProjectStatus,
    TransactionType,
)
from campus_escrow.services.bids_service import BidService
from campus_escrow.services.dispute_service import DisputeService
from campus_escrow.services.escrow_service import EscrowService
from campus_escrow.services.projects_service import ProjectService
from campus_escrow.services.reconciliation_service import ReconciliationService


THIRDS = [
    {"title": "Design", "percentage": 33},
    {"title": "Build", "percentage": 33},
    {"title": "Launch", "percentage": 34},
]


def _release_types(store, project_id):
    return [t.type for t in query(store, "transactions", project_id=project_id)]


def test_happy_path_single_milestone(store, client_user, student):
    escrow = EscrowService()
    project = make_open_project(store, client_user.id)

    bid = submit_bid(store, project.id, student.id, 500)
    receipt = escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=500)
    assert receipt.escrow_balance == 500

    result = BidService().accept(store, bid_id=bid.id, actor_id=client_user.id)
    (milestone,) = result.milestones
    assert milestone.share == 500
    assert milestone.percentage_bp == 10_000

    deliver(store, milestone.id, student.id)
    escrow.approve_milestone(store, project_id=project.id, milestone_id=milestone.id, actor_id=client_user.id)
    release = escrow.release_milestone(store, project_id=project.id, milestone_id=milestone.id, actor_id=client_user.id)

    assert release.release_amount == 500
    assert release.contract_status_after == ContractStatus.completed.value
    assert read(store, "users", client_user.id).wallet_balance == 500
    assert read(store, "users", student.id).wallet_balance == 500
    p = read(store, "projects", project.id)
    assert p.escrow_balance == 0
    assert p.status == ProjectStatus.completed.value
    assert sorted(_release_types(store, project.id)) == [
        TransactionType.escrow_fund.value,
        TransactionType.milestone_release.value,
    ]
    assert ReconciliationService().sweep(store).ok


def test_rounding_thirds_release_exactly_the_total(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=100, milestones=THIRDS)
    assert [m.share for m in result.milestones] == [33, 33, 34]

    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=100)
    for m in result.milestones:
        deliver(store, m.id, student.id)
        escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)
        escrow.release_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    assert read(store, "users", student.id).wallet_balance == 100
    assert read(store, "projects", project_id).escrow_balance == 0
    assert read(store, "projects", project_id).status == ProjectStatus.completed.value


def test_partial_release_twice_reaches_released(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=600)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=600)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    first = escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent=50, actor_id=client_user.id)
    assert first.cumulative_released == 300
    assert first.milestone_status == MilestoneStatus.approved.value
    assert read(store, "users", student.id).wallet_balance == 300

    second = escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent="50", actor_id=client_user.id)
    assert second.cumulative_released == 600
    assert second.milestone_status == MilestoneStatus.released.value

    stored = read(store, "milestones", m.id)
    assert stored.released_amount == 600
    assert stored.released_to_date == 600
    assert read(store, "projects", project_id).status == ProjectStatus.completed.value

    with pytest.raises(InvalidStateError):
        escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent=10, actor_id=client_user.id)


def test_partial_release_refuses_to_exceed_share(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=600)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=600)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent=60, actor_id=client_user.id)
    with pytest.raises(InvalidStateError):
        escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent=50, actor_id=client_user.id)

    assert read(store, "milestones", m.id).released_to_date == 360
    assert read(store, "users", student.id).wallet_balance == 360

    with pytest.raises(InvalidStateError):
        escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent=0, actor_id=client_user.id)


def test_partial_release_with_same_key_replays(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=600)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=600)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    kw = dict(project_id=project_id, milestone_id=m.id, percent=25, actor_id=client_user.id, idempotency_key="k-1")
    first = escrow.partial_release(store, **kw)
    again = escrow.partial_release(store, **kw)

    assert again.replayed is True
    assert again.transaction_id == first.transaction_id
    assert read(store, "users", student.id).wallet_balance == 150


def test_release_with_short_escrow_changes_nothing(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=500)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=200)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    with pytest.raises(InsufficientFundsError):
        escrow.release_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    assert read(store, "milestones", m.id).status == MilestoneStatus.approved.value
    assert read(store, "projects", project_id).escrow_balance == 200
    assert read(store, "users", student.id).wallet_balance == 0
    assert TransactionType.milestone_release.value not in _release_types(store, project_id)


def test_release_requires_approval(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=500)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=500)
    deliver(store, m.id, student.id)

    with pytest.raises(InvalidStateError):
        escrow.release_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)


def test_approve_twice_is_approve_once(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=500)
    (m,) = result.milestones
    deliver(store, m.id, student.id)

    first = escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)
    second = escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    assert first.status == second.status == MilestoneStatus.approved.value
    approvals = [a for a in query(store, "audit_log", project_id=project_id) if a.action == "MILESTONE_APPROVED"]
    assert len(approvals) == 1


def test_release_twice_returns_the_same_transaction(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=500)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=500)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    first = escrow.release_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)
    second = escrow.release_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    assert second.replayed is True
    assert second.transaction_id == first.transaction_id
    assert second.release_amount == 500
    assert read(store, "users", student.id).wallet_balance == 500


def test_release_retry_after_unknown_commit_outcome(store, client_user, student, monkeypatch):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=500)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=500)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    real_commit = StoreTx.commit
    calls = {"n": 0}

    def commit_then_time_out(self):
        real_commit(self)
        calls["n"] += 1
        if calls["n"] == 1:
            raise StoreTimeoutError("Commit outcome unknown.")

    monkeypatch.setattr(StoreTx, "commit", commit_then_time_out)
    receipt = escrow.release_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    assert calls["n"] == 2
    assert receipt.replayed is True
    releases = [t for t in query(store, "transactions", project_id=project_id) if t.type == "milestone_release"]
    assert len(releases) == 1
    assert receipt.transaction_id == releases[0].id
    stored = read(store, "milestones", m.id)
    assert stored.status == MilestoneStatus.released.value
    assert stored.released_amount == 500
    assert read(store, "users", student.id).wallet_balance == 500


def test_deposit_rules(store, client_user, student):
    escrow = EscrowService(min_deposit_amount=100, dev_wallet_topup=False)
    project = make_open_project(store, client_user.id)

    with pytest.raises(InvalidStateError):
        escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=50)
    with pytest.raises(InvalidStateError):
        escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=0)
    with pytest.raises(ForbiddenError):
        escrow.deposit(store, project_id=project.id, client_id=student.id, amount=200)
    with pytest.raises(InsufficientFundsError):
        escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=1_001)

    assert read(store, "projects", project.id).escrow_balance == 0


def test_deposit_into_draft_project_is_refused(store, client_user):
    draft = ProjectService().create_project(store, client_id=client_user.id, title="Draft only")
    with pytest.raises(InvalidStateError):
        EscrowService().deposit(store, project_id=draft.id, client_id=client_user.id, amount=200)


def test_deposit_with_same_key_is_applied_once(store, client_user):
    escrow = EscrowService()
    project = make_open_project(store, client_user.id)

    first = escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=300, idempotency_key="dep-1")
    again = escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=300, idempotency_key="dep-1")

    assert again.replayed is True
    assert again.transaction_id == first.transaction_id
    assert read(store, "projects", project.id).escrow_balance == 300
    assert read(store, "users", client_user.id).wallet_balance == 700


def test_dev_top_up_covers_the_shortfall(store):
    poor = make_user(store, "client", wallet=100)
    project = make_open_project(store, poor.id)

    receipt = EscrowService(min_deposit_amount=100, dev_wallet_topup=True).deposit(
        store, project_id=project.id, client_id=poor.id, amount=400
    )

    assert receipt.escrow_balance == 400
    assert read(store, "users", poor.id).wallet_balance == 0
    types = sorted(_release_types(store, project.id))
    assert types == [TransactionType.adjustment.value, TransactionType.escrow_fund.value]
    assert ReconciliationService().sweep(store).ok


def test_releases_are_frozen_while_disputed(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=500)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=500)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    DisputeService().open_dispute(store, project_id=project_id, initiator_id=student.id, reason="No reply")

    with pytest.raises(InvalidStateError):
        escrow.release_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)
    with pytest.raises(InvalidStateError):
        escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent=10, actor_id=client_user.id)
    assert read(store, "projects", project_id).escrow_balance == 500


def test_admin_refund(store, client_user, admin):
    escrow = EscrowService()
    project = make_open_project(store, client_user.id)
    escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=600)

    with pytest.raises(ForbiddenError):
        escrow.refund(store, project_id=project.id, amount=100, actor_id=client_user.id)

    receipt = escrow.refund(store, project_id=project.id, amount=250, actor_id=admin.id, idempotency_key="r-1")
    assert receipt.escrow_balance == 350
    assert read(store, "users", client_user.id).wallet_balance == 650

    with pytest.raises(InsufficientFundsError):
        escrow.refund(store, project_id=project.id, amount=351, actor_id=admin.id)


def test_deposit_key_reused_with_another_amount_is_refused(store, client_user):
    escrow = EscrowService()
    project = make_open_project(store, client_user.id)
    escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=200, idempotency_key="k1")

    with pytest.raises(InvalidStateError, match="Idempotency key reused"):
        escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=900, idempotency_key="k1")

    assert read(store, "projects", project.id).escrow_balance == 200
    assert read(store, "users", client_user.id).wallet_balance == 800


def test_partial_release_key_reused_with_another_percent_is_refused(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=600)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=600)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    kw = dict(project_id=project_id, milestone_id=m.id, actor_id=client_user.id, idempotency_key="k-1")
    escrow.partial_release(store, percent=25, **kw)
    with pytest.raises(InvalidStateError, match="Idempotency key reused"):
        escrow.partial_release(store, percent=50, **kw)

    assert read(store, "milestones", m.id).released_to_date == 150
    assert read(store, "users", student.id).wallet_balance == 150


def test_refund_key_reused_with_another_amount_is_refused(store, client_user, admin):
    escrow = EscrowService()
    project = make_open_project(store, client_user.id)
    escrow.deposit(store, project_id=project.id, client_id=client_user.id, amount=600)

    escrow.refund(store, project_id=project.id, amount=100, actor_id=admin.id, idempotency_key="r-1")
    with pytest.raises(InvalidStateError, match="Idempotency key reused"):
        escrow.refund(store, project_id=project.id, amount=300, actor_id=admin.id, idempotency_key="r-1")

    assert read(store, "projects", project.id).escrow_balance == 500
    assert read(store, "users", client_user.id).wallet_balance == 500


def test_release_after_partials_reports_the_whole_share(store, client_user, student):
    escrow = EscrowService()
    project_id, result = contract_for(store, client_user.id, student.id, price=600)
    (m,) = result.milestones
    escrow.deposit(store, project_id=project_id, client_id=client_user.id, amount=600)
    deliver(store, m.id, student.id)
    escrow.approve_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)
    escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent=50, actor_id=client_user.id)
    last = escrow.partial_release(store, project_id=project_id, milestone_id=m.id, percent=50, actor_id=client_user.id)

    again = escrow.release_milestone(store, project_id=project_id, milestone_id=m.id, actor_id=client_user.id)

    assert again.replayed is True
    assert again.release_amount == 600
    assert again.transaction_id == last.transaction_id
    assert read(store, "users", student.id).wallet_balance == 600
