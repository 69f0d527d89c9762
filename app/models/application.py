"""Application model."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.base import Base, utcnow


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


# Allowed review transitions; ACCEPTED and REJECTED are final
STATUS_TRANSITIONS = {
    ApplicationStatus.PENDING: {
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.ACCEPTED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.UNDER_REVIEW: {
        ApplicationStatus.ACCEPTED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.ACCEPTED: set(),
    ApplicationStatus.REJECTED: set(),
}


class Application(Base):
    """Student application to a project. Never deleted."""

    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("project_id", "student_id", name="unique_project_student_application"),
    )

    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id"), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    cover_letter = Column(Text, nullable=False)
    resume_url = Column(String(500), nullable=True)

    # Status tracking
    status = Column(String(20), nullable=False, default=ApplicationStatus.PENDING.value, index=True)
    applied_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewer_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="applications")
    student = relationship("User", back_populates="applications", foreign_keys=[student_id])
    reviewer = relationship("User", foreign_keys=[reviewer_id])

    def __repr__(self):
        return f"<Application {self.student_id} -> {self.project_id} ({self.status})>"
