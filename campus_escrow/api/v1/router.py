from fastapi import APIRouter

from campus_escrow.api.v1.health import router as health_router

from campus_escrow.api.v1.projects import router as projects_router
from campus_escrow.api.v1.bids import router as bids_router
from campus_escrow.api.v1.contracts import router as contracts_router
from campus_escrow.api.v1.escrow import router as escrow_router
from campus_escrow.api.v1.disputes import router as disputes_router
from campus_escrow.api.v1.wallet import router as wallet_router
from campus_escrow.api.v1.teams import router as teams_router
from campus_escrow.api.v1.notifications import router as notifications_router

# ADMIN
from campus_escrow.api.v1.admin.escrow import router as admin_escrow_router
from campus_escrow.api.v1.admin.disputes import router as admin_disputes_router

v1_router = APIRouter()

v1_router.include_router(health_router)

v1_router.include_router(projects_router)
v1_router.include_router(bids_router)
v1_router.include_router(contracts_router)
v1_router.include_router(escrow_router)
v1_router.include_router(disputes_router)
v1_router.include_router(wallet_router)
v1_router.include_router(teams_router)
v1_router.include_router(notifications_router)

v1_router.include_router(admin_escrow_router)
v1_router.include_router(admin_disputes_router)
