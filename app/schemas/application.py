"""Application schemas for API requests and responses."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.application import ApplicationStatus


class ApplicationCreate(BaseModel):
    """Student submission."""
    project_id: UUID
    cover_letter: str = Field(..., min_length=50, max_length=1000)
    resume_url: Optional[str] = Field(None, max_length=500)


class ApplicationStatusUpdate(BaseModel):
    """Owner review decision."""
    status: ApplicationStatus
    rejection_reason: Optional[str] = Field(None, min_length=10, max_length=500)


class ApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    student_id: UUID
    cover_letter: str
    resume_url: Optional[str] = None
    status: ApplicationStatus
    applied_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewer_id: Optional[UUID] = None
    rejection_reason: Optional[str] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class PaginatedApplications(BaseModel):
    data: List[ApplicationResponse]
    pagination: Pagination
