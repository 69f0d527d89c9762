"""Database models."""

# Import all models in dependency order to ensure proper relationship initialization

# Base models (no foreign keys)
from app.models.user import User, UserRole

# Models with foreign keys to base models
from app.models.project import Project, ProjectStatus

# Models with foreign keys to other models
from app.models.application import Application, ApplicationStatus

# Export all models
__all__ = [
    "User",
    "UserRole",
    "Project",
    "ProjectStatus",
    "Application",
    "ApplicationStatus",
]
