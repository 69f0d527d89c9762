"""
Notification Dispatcher

Turns committed domain events into delivery payloads and enqueues them.
Called strictly after the business transaction commits, so a rolled back
transaction never produces a notification and the transaction never waits
on the queue or on SMTP.
"""

from dataclasses import asdict, dataclass
from typing import Optional, Union
from uuid import UUID

import structlog

from app.config import Settings, settings as default_settings
from app.services import email_templates
from app.services.delivery_queue import DeliveryJob, DeliveryPayload, DeliveryQueue

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ApplicationSubmitted:
    """A student applied; the project owner gets an alert."""
    application_id: UUID
    project_id: UUID
    student_id: UUID
    project_title: str
    owner_email: str
    owner_name: str
    student_name: str
    cover_letter: str


@dataclass(frozen=True)
class ApplicationStatusChanged:
    """The owner reviewed an application; the student gets an update."""
    application_id: UUID
    project_title: str
    student_email: str
    student_name: str
    owner_name: str
    status: str
    rejection_reason: Optional[str] = None


DomainEvent = Union[ApplicationSubmitted, ApplicationStatusChanged]


def _template_data(event: DomainEvent) -> dict:
    return {k: str(v) if isinstance(v, UUID) else v for k, v in asdict(event).items()}


class NotificationDispatcher:
    """Pure translation event -> payload, followed by a single enqueue."""

    def __init__(self, queue: DeliveryQueue, config: Settings = default_settings):
        self.queue = queue
        self.application_alerts = config.NOTIFY_APPLICATION_ALERTS
        self.status_updates = config.NOTIFY_STATUS_UPDATES

    def build_payload(self, event: DomainEvent) -> Optional[DeliveryPayload]:
        """Payload for `event`, or None when its notification type is disabled."""
        if isinstance(event, ApplicationSubmitted):
            if not self.application_alerts:
                return None
            return DeliveryPayload(
                recipient=event.owner_email,
                template_key=email_templates.APPLICATION_RECEIVED,
                template_data=_template_data(event),
            )

        if isinstance(event, ApplicationStatusChanged):
            if not self.status_updates:
                return None
            return DeliveryPayload(
                recipient=event.student_email,
                template_key=email_templates.APPLICATION_STATUS,
                template_data=_template_data(event),
            )

        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    def notify(self, event: DomainEvent) -> Optional[DeliveryJob]:
        payload = self.build_payload(event)
        if payload is None:
            logger.debug("notification_disabled", event_type=type(event).__name__)
            return None

        job = self.queue.enqueue(payload)
        logger.info(
            "notification_queued",
            event_type=type(event).__name__,
            application_id=str(event.application_id),
            job_id=job.id,
            template=payload.template_key,
        )
        return job
