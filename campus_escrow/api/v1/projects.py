# campus_escrow/api/v1/projects.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.policies.rbac import ACTION_CREATE_PROJECT, Principal, require_action
from campus_escrow.schemas.projects import ProjectCreateRequest, ProjectResponse
from campus_escrow.schemas.serializers import project_to_resp
from campus_escrow.services.projects_service import ProjectService

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    body: ProjectCreateRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    require_action(principal, ACTION_CREATE_PROJECT)
    project = ProjectService().create_project(
        store,
        client_id=principal.actor_id,
        title=body.title,
        description=body.description,
        milestone_plan=[
            {"title": m.title, "percentage": m.percentage, "due_date": m.dueDate}
            for m in body.milestones
        ],
    )
    return project_to_resp(project)


@router.get("", response_model=list[ProjectResponse])
def list_open_projects(
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return [project_to_resp(p) for p in ProjectService().list_open(store)]


@router.get("/mine", response_model=list[ProjectResponse])
def list_my_projects(
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return [project_to_resp(p) for p in ProjectService().list_for_client(store, principal.actor_id)]


@router.get("/{projectId}", response_model=ProjectResponse)
def get_project(
    projectId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return project_to_resp(ProjectService().get_project(store, projectId))


@router.post("/{projectId}/publish", response_model=ProjectResponse)
def publish_project(
    projectId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    project = ProjectService().publish_project(store, project_id=projectId, actor_id=principal.actor_id)
    return project_to_resp(project)


@router.post("/{projectId}/cancel", response_model=ProjectResponse)
def cancel_project(
    projectId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    project = ProjectService().cancel_project(store, project_id=projectId, actor_id=principal.actor_id)
    return project_to_resp(project)
