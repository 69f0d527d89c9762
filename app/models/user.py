"""User model."""

from enum import Enum

from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship

from app.db.base import Base


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    MENTOR = "MENTOR"
    EMPLOYER = "EMPLOYER"
    ADMIN = "ADMIN"


class User(Base):
    """Marketplace user: students apply, mentors and employers post projects."""

    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.STUDENT.value, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    projects = relationship("Project", back_populates="created_by")
    applications = relationship(
        "Application",
        back_populates="student",
        foreign_keys="Application.student_id",
    )

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
