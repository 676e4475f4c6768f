import pytest

from conftest import contract_for, deliver, query, read

from campus_escrow.core.errors import ForbiddenError, InvalidStateError, NotFoundError
from campus_escrow.models.enums import MilestoneStatus
from campus_escrow.services.contract_service import ContractService
from campus_escrow.services.milestone_service import MilestoneService


@pytest.fixture
def contracted(store, client_user, student):
    plan = [{"title": "Wireframes", "percentage": 25}, {"title": "Build", "percentage": 75}]
    project_id, result = contract_for(store, client_user.id, student.id, price=800, milestones=plan)
    return project_id, result


def test_only_the_assignee_starts_and_submits(store, client_user, student, contracted):
    _, result = contracted
    first = result.milestones[0]
    svc = MilestoneService()

    with pytest.raises(ForbiddenError):
        svc.start(store, milestone_id=first.id, actor_id=client_user.id)
    with pytest.raises(InvalidStateError):
        svc.submit(store, milestone_id=first.id, actor_id=student.id)

    svc.start(store, milestone_id=first.id, actor_id=student.id)
    started = read(store, "milestones", first.id)
    assert started.status == MilestoneStatus.in_progress.value
    assert started.started_at is not None

    svc.submit(store, milestone_id=first.id, actor_id=student.id, artifacts=[{"url": "https://example.test/wf.pdf"}], note="v1")
    submitted = read(store, "milestones", first.id)
    assert submitted.status == MilestoneStatus.submitted.value
    assert submitted.artifacts == [{"url": "https://example.test/wf.pdf"}]
    assert submitted.submission_note == "v1"


def test_submission_notifies_the_client(store, client_user, student, contracted):
    project_id, result = contracted
    deliver(store, result.milestones[0].id, student.id)
    notices = [m for m in query(store, "outbox", project_id=project_id) if m.topic == "milestone.submitted"]
    assert [m.recipient_id for m in notices] == [client_user.id]
    assert notices[0].payload_json["order"] == 1


def test_reject_returns_work_and_counts(store, client_user, student, contracted):
    _, result = contracted
    first = result.milestones[0]
    svc = MilestoneService()
    deliver(store, first.id, student.id)

    with pytest.raises(ForbiddenError):
        svc.reject(store, milestone_id=first.id, actor_id=student.id, feedback="Self review")
    with pytest.raises(InvalidStateError):
        svc.reject(store, milestone_id=first.id, actor_id=client_user.id, feedback="")

    svc.reject(store, milestone_id=first.id, actor_id=client_user.id, feedback="Missing the login page")
    m = read(store, "milestones", first.id)
    assert m.status == MilestoneStatus.in_progress.value
    assert m.rejection_count == 1
    assert m.last_feedback == "Missing the login page"

    svc.submit(store, milestone_id=first.id, actor_id=student.id)
    svc.reject(store, milestone_id=first.id, actor_id=client_user.id, feedback="Still missing")
    assert read(store, "milestones", first.id).rejection_count == 2


def test_no_work_after_the_contract_is_cancelled(store, client_user, student, contracted):
    _, result = contracted
    ContractService().cancel_contract(store, contract_id=result.contract.id, actor_id=client_user.id, reason="Budget cut")
    with pytest.raises(InvalidStateError):
        MilestoneService().start(store, milestone_id=result.milestones[1].id, actor_id=student.id)


def test_list_for_contract_is_ordered(store, contracted):
    _, result = contracted
    svc = MilestoneService()
    listed = svc.list_for_contract(store, result.contract.id)
    assert [m.order for m in listed] == [1, 2]
    assert [m.share for m in listed] == [200, 600]
    with pytest.raises(NotFoundError):
        svc.get(store, "missing")
