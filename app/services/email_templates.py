"""Plain-text notification messages keyed by template name."""

from typing import Any, Dict, Tuple

APPLICATION_RECEIVED = "application_received"
APPLICATION_STATUS = "application_status"

_STATUS_SUBJECTS = {
    "ACCEPTED": 'Congratulations! You\'ve been accepted for "{project_title}"',
    "REJECTED": 'Application Update: "{project_title}"',
    "UNDER_REVIEW": 'Your application for "{project_title}" is under review',
}

_STATUS_LINES = {
    "ACCEPTED": "Great news: {owner_name} accepted your application for \"{project_title}\".",
    "REJECTED": "{owner_name} has decided not to move forward with your application for \"{project_title}\".",
    "UNDER_REVIEW": "{owner_name} is now reviewing your application for \"{project_title}\".",
}


def _application_received(data: Dict[str, Any]) -> Tuple[str, str]:
    subject = 'New Application: {student_name} applied to "{project_title}"'.format(**data)
    body = (
        "Hi {owner_name},\n\n"
        "{student_name} just applied to \"{project_title}\".\n\n"
        "Cover letter:\n{cover_letter}\n\n"
        "Application ID: {application_id}\n"
    ).format(**data)
    return subject, body


def _application_status(data: Dict[str, Any]) -> Tuple[str, str]:
    status = data["status"]
    subject = _STATUS_SUBJECTS[status].format(**data)
    body = "Hi {student_name},\n\n".format(**data) + _STATUS_LINES[status].format(**data) + "\n"
    if status == "REJECTED" and data.get("rejection_reason"):
        body += "\nFeedback from the reviewer:\n{rejection_reason}\n".format(**data)
    return subject, body


_RENDERERS = {
    APPLICATION_RECEIVED: _application_received,
    APPLICATION_STATUS: _application_status,
}


def render_message(template_key: str, data: Dict[str, Any]) -> Tuple[str, str]:
    """Return (subject, body). Raises KeyError for unknown templates or missing fields."""
    return _RENDERERS[template_key](data)
