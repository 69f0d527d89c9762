"""Project model."""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.base import Base


class ProjectStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"


class Project(Base):
    """
    Project or internship posted by a mentor/employer.

    `current_applicants` is the capacity counter. It is only written by
    ApplicationIntake, inside the same transaction that inserts the application.
    """

    __tablename__ = "projects"
    __table_args__ = (
        CheckConstraint("current_applicants >= 0", name="ck_projects_current_applicants_non_negative"),
        CheckConstraint(
            "max_applicants IS NULL OR current_applicants <= max_applicants",
            name="ck_projects_capacity",
        ),
    )

    created_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default=ProjectStatus.DRAFT.value, index=True)

    # Capacity
    max_applicants = Column(Integer, nullable=True)  # None = unlimited
    current_applicants = Column(Integer, nullable=False, default=0)

    # Relationships
    created_by = relationship("User", back_populates="projects")
    applications = relationship("Application", back_populates="project")

    @property
    def is_full(self) -> bool:
        return self.max_applicants is not None and self.current_applicants >= self.max_applicants

    def __repr__(self):
        return f"<Project {self.title} ({self.status} {self.current_applicants}/{self.max_applicants})>"
