"""
Application Intake Service

Owns every write to applications and to a project's applicant counter.

submit() runs in one SERIALIZABLE transaction:
    1. load project (NotFound) and student (NotFound)
    2. project must be PUBLISHED (Validation)
    3. capacity check (Validation)
    4. duplicate check (Conflict)
    5. guarded counter increment + insert, same transaction

The increment is a conditional UPDATE (still published, still below the
maximum), so two writers that both read "one slot left" cannot both commit,
even on a database that does not detect the write skew itself. Lock wait and
total duration are bounded; exceeding either, or a serialization abort,
surfaces as TransientError. Nothing here retries: callers decide.

Notifications are emitted only after commit.
"""

import asyncio
import math
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import func, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    MarketplaceError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from app.db.base import utcnow
from app.models.application import STATUS_TRANSITIONS, Application, ApplicationStatus
from app.models.project import Project, ProjectStatus
from app.models.user import User
from app.services.notification_dispatcher import (
    ApplicationStatusChanged,
    ApplicationSubmitted,
    NotificationDispatcher,
)

logger = structlog.get_logger(__name__)

# PostgreSQL SQLSTATEs that mean "try again", not "your request is invalid"
RETRYABLE_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available (lock_timeout)
    "57014",  # query_canceled (statement_timeout)
}


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


CONFLICT_MESSAGES = {
    "submit": "You have already applied to this project",
}


def classify_db_error(exc: DBAPIError, operation: str = "submit") -> Optional[MarketplaceError]:
    """Map a driver error raised inside an intake transaction to the taxonomy, None if unknown."""
    if _sqlstate(exc) in RETRYABLE_SQLSTATES:
        return TransientError("Database is busy, please retry", context={"sqlstate": _sqlstate(exc)})
    if isinstance(exc, IntegrityError):
        return ConflictError(
            CONFLICT_MESSAGES.get(operation, "Conflicting change to the application, please retry"),
            context={"operation": operation},
        )
    if isinstance(exc, OperationalError) and "locked" in str(exc.orig).lower():
        # SQLite busy timeout
        return TransientError("Database is busy, please retry")
    return None


class ApplicationIntake:
    """Transactional application service."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        dispatcher: Optional[NotificationDispatcher] = None,
        lock_timeout_seconds: float = settings.INTAKE_LOCK_TIMEOUT_SECONDS,
        transaction_timeout_seconds: float = settings.INTAKE_TRANSACTION_TIMEOUT_SECONDS,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.lock_timeout_seconds = lock_timeout_seconds
        self.transaction_timeout_seconds = transaction_timeout_seconds

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _serializable(self) -> AsyncIterator[AsyncSession]:
        """Session in a SERIALIZABLE transaction, committed on clean exit."""
        async with self.session_factory() as session:
            async with session.begin():
                conn = await session.connection(
                    execution_options={"isolation_level": "SERIALIZABLE"}
                )
                if conn.dialect.name == "postgresql":
                    lock_ms = int(self.lock_timeout_seconds * 1000)
                    total_ms = int(self.transaction_timeout_seconds * 1000)
                    await session.execute(text(f"SET LOCAL lock_timeout = {lock_ms}"))
                    await session.execute(text(f"SET LOCAL statement_timeout = {total_ms}"))
                yield session

    async def _run(self, operation: str, body, *args):
        """Run `body(session, *args)` transactionally with the duration ceiling."""

        async def _transaction():
            async with self._serializable() as session:
                return await body(session, *args)

        try:
            return await asyncio.wait_for(_transaction(), timeout=self.transaction_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "intake_transaction_timeout",
                operation=operation,
                timeout_seconds=self.transaction_timeout_seconds,
            )
            raise TransientError("Request timed out, please retry") from None
        except DBAPIError as e:
            error = classify_db_error(e, operation)
            if error is None:
                raise
            logger.warning("intake_transaction_aborted", operation=operation, code=error.code, error=str(e.orig))
            raise error from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def submit(
        self,
        project_id: UUID,
        student_id: UUID,
        cover_letter: str,
        resume_url: Optional[str] = None,
    ) -> Application:
        """Create a PENDING application and take one capacity slot."""
        application, event = await self._run(
            "submit", self._submit_tx, project_id, student_id, cover_letter, resume_url
        )

        logger.info(
            "application_created",
            application_id=str(application.id),
            project_id=str(project_id),
            student_id=str(student_id),
        )
        self._dispatch(event)
        return application

    async def _submit_tx(
        self,
        session: AsyncSession,
        project_id: UUID,
        student_id: UUID,
        cover_letter: str,
        resume_url: Optional[str],
    ):
        project = await session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found", context={"project_id": str(project_id)})

        student = await session.get(User, student_id)
        if student is None:
            raise NotFoundError("Student not found", context={"student_id": str(student_id)})

        if project.status != ProjectStatus.PUBLISHED.value:
            raise ValidationError("Cannot apply to unpublished projects")

        if project.is_full:
            raise ValidationError("Project has reached maximum applicants (capacity reached)")

        existing = await session.execute(
            select(Application.id).where(
                Application.project_id == project_id,
                Application.student_id == student_id,
            )
        )
        if existing.first() is not None:
            raise ConflictError("You have already applied to this project")

        # Take the slot only if it is still free at write time
        result = await session.execute(
            update(Project)
            .where(
                Project.id == project_id,
                Project.status == ProjectStatus.PUBLISHED.value,
                (Project.max_applicants.is_(None))
                | (Project.current_applicants < Project.max_applicants),
            )
            .values(current_applicants=Project.current_applicants + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Another application took the last slot, please retry")

        application = Application(
            project_id=project_id,
            student_id=student_id,
            cover_letter=cover_letter,
            resume_url=resume_url,
            status=ApplicationStatus.PENDING.value,
        )
        session.add(application)
        await session.flush()

        owner = await session.get(User, project.created_by_id)
        event = ApplicationSubmitted(
            application_id=application.id,
            project_id=project.id,
            student_id=student.id,
            project_title=project.title,
            owner_email=owner.email,
            owner_name=owner.full_name,
            student_name=student.full_name,
            cover_letter=cover_letter,
        )
        return application, event

    async def update_status(
        self,
        application_id: UUID,
        actor_id: UUID,
        new_status: Union[ApplicationStatus, str],
        reason: Optional[str] = None,
    ) -> Application:
        """Owner review decision. Notifies the student after commit."""
        try:
            new_status = ApplicationStatus(new_status)
        except ValueError:
            raise ValidationError(
                f"Unknown application status: {new_status}",
                context={"allowed": [s.value for s in ApplicationStatus]},
            ) from None
        application, event = await self._run(
            "update_status", self._update_status_tx, application_id, actor_id, new_status, reason
        )

        logger.info(
            "application_status_updated",
            application_id=str(application_id),
            status=new_status.value,
            reviewer_id=str(actor_id),
        )
        self._dispatch(event)
        return application

    async def _update_status_tx(
        self,
        session: AsyncSession,
        application_id: UUID,
        actor_id: UUID,
        new_status: ApplicationStatus,
        reason: Optional[str],
    ):
        application = await session.get(Application, application_id)
        if application is None:
            raise NotFoundError("Application not found", context={"application_id": str(application_id)})

        project = await session.get(Project, application.project_id)
        if project.created_by_id != actor_id:
            raise ForbiddenError("You do not have permission to update this application")

        if new_status == ApplicationStatus.REJECTED and not reason:
            raise ValidationError("Rejection reason is required when rejecting")
        if new_status != ApplicationStatus.REJECTED and reason:
            raise ValidationError("Rejection reason is only allowed when rejecting")

        current = ApplicationStatus(application.status)
        if new_status not in STATUS_TRANSITIONS[current]:
            raise ValidationError(
                f"Cannot change application status from {current.value} to {new_status.value}"
            )

        application.status = new_status.value
        application.reviewer_id = actor_id
        application.reviewed_at = utcnow()
        application.rejection_reason = reason if new_status == ApplicationStatus.REJECTED else None
        await session.flush()

        student = await session.get(User, application.student_id)
        owner = await session.get(User, actor_id)
        event = ApplicationStatusChanged(
            application_id=application.id,
            project_title=project.title,
            student_email=student.email,
            student_name=student.full_name,
            owner_name=owner.full_name if owner else "The project owner",
            status=new_status.value,
            rejection_reason=application.rejection_reason,
        )
        return application, event

    def _dispatch(self, event) -> None:
        """Fire-and-forget after commit; a queue problem never fails the request."""
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.notify(event)
        except Exception:
            logger.exception("notification_dispatch_failed", event_type=type(event).__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_application(self, application_id: UUID) -> Application:
        async with self.session_factory() as session:
            application = await session.get(Application, application_id)
        if application is None:
            raise NotFoundError("Application not found", context={"application_id": str(application_id)})
        return application

    async def list_applications(
        self,
        page: int = 1,
        limit: int = settings.DEFAULT_PAGE_SIZE,
        status: Optional[ApplicationStatus] = None,
        project_id: Optional[UUID] = None,
        student_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """Paginated listing, newest first."""
        page = max(page, 1)
        limit = min(max(limit, 1), settings.MAX_PAGE_SIZE)

        filters = []
        if status is not None:
            filters.append(Application.status == ApplicationStatus(status).value)
        if project_id is not None:
            filters.append(Application.project_id == project_id)
        if student_id is not None:
            filters.append(Application.student_id == student_id)

        async with self.session_factory() as session:
            total = await session.scalar(select(func.count(Application.id)).where(*filters))
            result = await session.execute(
                select(Application)
                .where(*filters)
                .order_by(Application.applied_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            applications = list(result.scalars().all())

        total_pages = math.ceil(total / limit) if total else 0
        return {
            "data": applications,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "total_pages": total_pages,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }

    async def list_student_applications(self, student_id: UUID) -> List[Application]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Application)
                .where(Application.student_id == student_id)
                .order_by(Application.applied_at.desc())
            )
            return list(result.scalars().all())

    async def list_project_applications(self, project_id: UUID, actor_id: UUID) -> List[Application]:
        """Applications to a project, visible to its owner only."""
        async with self.session_factory() as session:
            project = await session.get(Project, project_id)
            if project is None:
                raise NotFoundError("Project not found", context={"project_id": str(project_id)})
            if project.created_by_id != actor_id:
                raise ForbiddenError("You do not have permission to view these applications")

            result = await session.execute(
                select(Application)
                .where(Application.project_id == project_id)
                .order_by(Application.applied_at.desc())
            )
            return list(result.scalars().all())
