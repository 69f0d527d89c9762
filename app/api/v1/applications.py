"""
Applications API
Students apply to projects; project owners review applications
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_user, get_intake, require_role
from app.config import settings
from app.models.application import ApplicationStatus
from app.models.user import User, UserRole
from app.schemas.application import (
    ApplicationCreate,
    ApplicationResponse,
    ApplicationStatusUpdate,
    PaginatedApplications,
)
from app.services.application_intake import ApplicationIntake

router = APIRouter()


@router.post("", response_model=ApplicationResponse, status_code=status.HTTP_201_CREATED)
async def submit_application(
    application_in: ApplicationCreate,
    current_user: User = Depends(require_role(UserRole.STUDENT)),
    intake: ApplicationIntake = Depends(get_intake),
):
    """
    Apply to a published project

    **Auth**: Student (JWT required)

    - 404 if the project does not exist
    - 400 if the project is not published or is full
    - 409 if you already applied
    - 503 if the database was too busy (safe to retry)
    """
    return await intake.submit(
        project_id=application_in.project_id,
        student_id=current_user.id,
        cover_letter=application_in.cover_letter,
        resume_url=application_in.resume_url,
    )


@router.get("", response_model=PaginatedApplications)
async def list_applications(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status_filter: Optional[ApplicationStatus] = Query(None, alias="status"),
    project_id: Optional[UUID] = Query(None),
    student_id: Optional[UUID] = Query(None),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    intake: ApplicationIntake = Depends(get_intake),
):
    """
    List all applications (newest first)

    **Auth**: Admin (JWT required)
    """
    return await intake.list_applications(
        page=page,
        limit=limit,
        status=status_filter,
        project_id=project_id,
        student_id=student_id,
    )


@router.get("/me", response_model=List[ApplicationResponse])
async def my_applications(
    current_user: User = Depends(require_role(UserRole.STUDENT)),
    intake: ApplicationIntake = Depends(get_intake),
):
    """Applications submitted by the current student."""
    return await intake.list_student_applications(current_user.id)


@router.get("/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: UUID,
    current_user: User = Depends(get_current_user),
    intake: ApplicationIntake = Depends(get_intake),
):
    return await intake.get_application(application_id)


@router.patch("/{application_id}/status", response_model=ApplicationResponse)
async def update_application_status(
    application_id: UUID,
    status_in: ApplicationStatusUpdate,
    current_user: User = Depends(require_role(UserRole.MENTOR, UserRole.EMPLOYER)),
    intake: ApplicationIntake = Depends(get_intake),
):
    """
    Review an application

    **Auth**: Project owner (JWT required)

    `rejection_reason` is required when rejecting. The student is emailed
    in the background once the change is saved.
    """
    return await intake.update_status(
        application_id=application_id,
        actor_id=current_user.id,
        new_status=status_in.status,
        reason=status_in.rejection_reason,
    )
