import pytest

from conftest import contract_for, make_open_project, make_user, query, read, submit_bid

from campus_escrow.core.errors import ForbiddenError, InvalidStateError
from campus_escrow.models.enums import BidStatus, ContractStatus, MilestoneStatus, ProjectStatus
from campus_escrow.services.contract_service import ContractService, plan_milestones
from campus_escrow.services.escrow_service import EscrowService
from campus_escrow.services.milestone_service import MilestoneService
from campus_escrow.services.projects_service import (
    PROJECT_CANCELLED_REASON,
    ProjectService,
    normalize_milestone_plan,
)


# ─────────────────────────────────────────────
# PROJECTS
# ─────────────────────────────────────────────

def test_create_project_stores_plan_in_basis_points(store, client_user):
    project = ProjectService().create_project(
        store,
        client_id=client_user.id,
        title="  Mobile app  ",
        milestone_plan=[{"title": "Design", "percentage": "12.5"}, {"title": "Build", "percentage": "87.5"}],
    )
    assert project.status == ProjectStatus.draft.value
    assert project.title == "Mobile app"
    assert [m["percentage_bp"] for m in project.milestone_plan] == [1_250, 8_750]
    assert project.escrow_balance == 0


def test_plan_must_sum_to_one_hundred():
    with pytest.raises(InvalidStateError):
        normalize_milestone_plan([{"title": "A", "percentage": 40}, {"title": "B", "percentage": 50}])
    with pytest.raises(InvalidStateError):
        normalize_milestone_plan([{"title": "", "percentage": 100}])
    assert normalize_milestone_plan(None) == []


def test_empty_plan_becomes_one_implicit_milestone():
    plan = plan_milestones([])
    assert len(plan) == 1
    assert plan[0]["percentage_bp"] == 10_000


def test_only_clients_create_projects(store, student):
    with pytest.raises(ForbiddenError):
        ProjectService().create_project(store, client_id=student.id, title="Homework help")


def test_publish_only_from_draft(store, client_user, student):
    svc = ProjectService()
    project = svc.create_project(store, client_id=client_user.id, title="Poster")
    with pytest.raises(ForbiddenError):
        svc.publish_project(store, project_id=project.id, actor_id=student.id)

    published = svc.publish_project(store, project_id=project.id, actor_id=client_user.id)
    assert published.status == ProjectStatus.open.value
    with pytest.raises(InvalidStateError):
        svc.publish_project(store, project_id=project.id, actor_id=client_user.id)
    assert [p.id for p in svc.list_open(store)] == [project.id]


def test_cancel_open_project_rejects_bids_and_refunds(store, client_user, student, student2):
    project = make_open_project(store, client_user.id)
    b1 = submit_bid(store, project.id, student.id, 300)
    b2 = submit_bid(store, project.id, student2.id, 350)
    EscrowService().deposit(store, project_id=project.id, client_id=client_user.id, amount=200)

    cancelled = ProjectService().cancel_project(store, project_id=project.id, actor_id=client_user.id)

    assert cancelled.status == ProjectStatus.cancelled.value
    for bid_id in (b1.id, b2.id):
        bid = read(store, "bids", bid_id)
        assert bid.status == BidStatus.rejected.value
        assert bid.rejection_reason == PROJECT_CANCELLED_REASON
    assert read(store, "projects", project.id).escrow_balance == 0
    assert read(store, "users", client_user.id).wallet_balance == 1_000


def test_cannot_cancel_a_contracted_project(store, client_user, student):
    project_id, _ = contract_for(store, client_user.id, student.id, price=400)
    with pytest.raises(InvalidStateError):
        ProjectService().cancel_project(store, project_id=project_id, actor_id=client_user.id)


# ─────────────────────────────────────────────
# CONTRACTS
# ─────────────────────────────────────────────

def test_contract_cancel_refunds_escrow_and_cancels_milestones(store, client_user, student):
    plan = [{"title": "Draft", "percentage": 50}, {"title": "Final", "percentage": 50}]
    project_id, result = contract_for(store, client_user.id, student.id, price=600, milestones=plan)
    EscrowService().deposit(store, project_id=project_id, client_id=client_user.id, amount=600)
    MilestoneService().start(store, milestone_id=result.milestones[0].id, actor_id=student.id)

    contract = ContractService().cancel_contract(
        store, contract_id=result.contract.id, actor_id=student.id, reason="Exams came up"
    )

    assert contract.status == ContractStatus.cancelled.value
    stored = read(store, "contracts", result.contract.id)
    assert stored.cancelled_by == student.id
    assert stored.cancellation_reason == "Exams came up"
    assert stored.accepted_bid_id == result.contract.accepted_bid_id

    project = read(store, "projects", project_id)
    assert project.status == ProjectStatus.cancelled.value
    assert project.escrow_balance == 0
    assert read(store, "users", client_user.id).wallet_balance == 1_000
    statuses = [m.status for m in query(store, "milestones", contract_id=result.contract.id)]
    assert statuses == [MilestoneStatus.cancelled.value] * 2

    notices = [m for m in query(store, "outbox", project_id=project_id) if m.topic == "contract.cancelled"]
    assert [m.recipient_id for m in notices] == [client_user.id]


def test_contract_cancel_rules(store, client_user, student):
    outsider = make_user(store, "client")
    project_id, result = contract_for(store, client_user.id, student.id, price=300)
    svc = ContractService()

    with pytest.raises(InvalidStateError):
        svc.cancel_contract(store, contract_id=result.contract.id, actor_id=client_user.id, reason=" ")
    with pytest.raises(ForbiddenError):
        svc.cancel_contract(store, contract_id=result.contract.id, actor_id=outsider.id, reason="Not mine")

    svc.cancel_contract(store, contract_id=result.contract.id, actor_id=client_user.id, reason="Changed plans")
    with pytest.raises(InvalidStateError):
        svc.cancel_contract(store, contract_id=result.contract.id, actor_id=client_user.id, reason="Again")


def test_contract_lookup_by_project(store, client_user, student):
    project_id, result = contract_for(store, client_user.id, student.id, price=300)
    svc = ContractService()
    assert svc.get_for_project(store, project_id).id == result.contract.id
    assert svc.get_contract(store, result.contract.id).total_amount == 300
