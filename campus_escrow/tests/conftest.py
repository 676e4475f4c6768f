import os

# settings are read at import time by campus_escrow.db.session
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# FORCE model registration
import campus_escrow.models  # noqa

from campus_escrow.core.money import new_id
from campus_escrow.db.base import Base
from campus_escrow.db.store import COLLECTIONS, Store
from campus_escrow.models.enums import UserRole
from campus_escrow.services.bids_service import BidDraft, BidService
from campus_escrow.services.projects_service import ProjectService


@pytest.fixture(scope="function")
def engine(tmp_path):
    # file database: concurrent-accept tests need a second connection
    eng = create_engine(
        f"sqlite:///{tmp_path / 'escrow.db'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def store(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    return Store(SessionLocal, max_retries=5, sleep=lambda s: None)


# ─────────────────────────────────────────────
# SEED HELPERS
# ─────────────────────────────────────────────

def make_user(store, role, *, wallet=0, name=None):
    user_id = new_id()

    def _op(tx):
        return tx.set(
            "users",
            user_id,
            {
                "role": UserRole(role).value,
                "display_name": name or f"{role}-{user_id[:6]}",
                "verified": True,
                "wallet_balance": wallet,
                "opening_balance": wallet,
            },
        )

    return store.run(_op, op="test.seed_user")


def make_open_project(store, client_id, *, milestones=None, title="Landing page"):
    svc = ProjectService()
    project = svc.create_project(store, client_id=client_id, title=title, milestone_plan=milestones)
    return svc.publish_project(store, project_id=project.id, actor_id=client_id)


def submit_bid(store, project_id, actor_id, price, **kw):
    return BidService().submit(
        store,
        BidDraft(project_id=project_id, actor_id=actor_id, price=price, eta_days=kw.pop("eta_days", 7), pitch="I can do it", **kw),
    )


def read(store, collection, doc_id):
    with store.read() as tx:
        return tx.get(collection, doc_id)


def query(store, collection, **filters):
    columns = COLLECTIONS[collection].__table__.columns
    if collection == "milestones":
        order_by = "order"
    else:
        order_by = "created_at" if "created_at" in columns else None
    with store.read() as tx:
        return tx.query(collection, order_by=order_by, **filters)


@pytest.fixture
def client_user(store):
    return make_user(store, "client", wallet=1_000)


@pytest.fixture
def student(store):
    return make_user(store, "student")


@pytest.fixture
def student2(store):
    return make_user(store, "student")


@pytest.fixture
def admin(store):
    return make_user(store, "admin")


def contract_for(store, client_id, student_id, *, price, milestones=None):
    project = make_open_project(store, client_id, milestones=milestones)
    bid = submit_bid(store, project.id, student_id, price)
    result = BidService().accept(store, bid_id=bid.id, actor_id=client_id)
    return project.id, result


def deliver(store, milestone_id, student_id):
    """pending -> in_progress -> submitted"""
    from campus_escrow.services.milestone_service import MilestoneService

    svc = MilestoneService()
    svc.start(store, milestone_id=milestone_id, actor_id=student_id)
    return svc.submit(store, milestone_id=milestone_id, actor_id=student_id, artifacts=[{"url": "https://example.test/build.zip"}])
