"""Project-scoped application views for project owners."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends

from app.api.deps import get_intake, require_role
from app.models.user import User, UserRole
from app.schemas.application import ApplicationResponse
from app.services.application_intake import ApplicationIntake

router = APIRouter()


@router.get("/{project_id}/applications", response_model=List[ApplicationResponse])
async def list_project_applications(
    project_id: UUID,
    current_user: User = Depends(require_role(UserRole.MENTOR, UserRole.EMPLOYER)),
    intake: ApplicationIntake = Depends(get_intake),
):
    """
    Applications received by a project

    **Auth**: Project owner (JWT required)
    """
    return await intake.list_project_applications(project_id, current_user.id)
