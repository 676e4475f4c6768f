from __future__ import annotations

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.models.enums import TeamMemberRole
from campus_escrow.policies.rbac import ACTION_CREATE_TEAM, Principal, require_action
from campus_escrow.schemas.teams import TeamCreateRequest, TeamMemberAddRequest, TeamMemberResponse, TeamResponse
from campus_escrow.services.teams_service import TeamService

router = APIRouter(prefix="/teams", tags=["teams"])


def _to_resp(store: Store, svc: TeamService, team_id: str) -> dict:
    team = svc.get_team(store, team_id)
    return {
        "teamId": team.id,
        "ownerUserId": team.owner_user_id,
        "name": team.name,
        "teamWalletBalance": team.team_wallet_balance,
        "members": [{"userId": m.user_id, "role": m.role} for m in svc.list_members(store, team_id)],
    }


@router.post("", response_model=TeamResponse, status_code=201)
def create_team(
    body: TeamCreateRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    require_action(principal, ACTION_CREATE_TEAM)
    svc = TeamService()
    team = svc.create_team(store, owner_id=principal.actor_id, name=body.name)
    return _to_resp(store, svc, team.id)


@router.get("/{teamId}", response_model=TeamResponse)
def get_team(
    teamId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return _to_resp(store, TeamService(), teamId)


@router.post("/{teamId}/members", response_model=TeamMemberResponse, status_code=201)
def add_member(
    teamId: str,
    body: TeamMemberAddRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    member = TeamService().add_member(
        store,
        team_id=teamId,
        actor_id=principal.actor_id,
        user_id=body.userId,
        role=TeamMemberRole(body.role),
    )
    return {"userId": member.user_id, "role": member.role}
