"""Message templates: room defaults and `{variable}` rendering."""

import re
from typing import Mapping

from crisiscomm.schemas.room import Template, TemplateType, TemplateVariable

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def default_templates() -> list[Template]:
    """Templates every new room starts with unless the caller brings its own."""
    return [
        Template(
            name="Initial Alert",
            type=TemplateType.INITIAL_ALERT,
            subject="CRISIS ALERT: {event_title}",
            content=(
                "<h2>Crisis Alert</h2>"
                "<p>A new crisis has been identified that requires immediate attention.</p>"
                "<p><strong>Event:</strong> {event_title}</p>"
                "<p><strong>Severity:</strong> {severity}</p>"
                "<p><strong>Description:</strong> {event_description}</p>"
                "<p>Please review and respond as appropriate.</p>"
            ),
            variables=[
                TemplateVariable(name="event_title", description="Event title"),
                TemplateVariable(name="severity", description="Crisis severity", default_value="medium"),
                TemplateVariable(name="event_description", description="Event description"),
            ],
            is_default=True,
        ),
        Template(
            name="Status Update",
            type=TemplateType.STATUS_UPDATE,
            subject="STATUS UPDATE: {crisis_title}",
            content=(
                "<h2>Status Update</h2>"
                "<p>This is an update on the ongoing crisis situation.</p>"
                "<p><strong>Current Status:</strong> {status}</p>"
                "<p><strong>Update:</strong> {update_content}</p>"
                "<p>Please review and take any necessary actions.</p>"
            ),
            variables=[
                TemplateVariable(name="crisis_title", description="Crisis title"),
                TemplateVariable(name="status", description="Current status", default_value="active"),
                TemplateVariable(name="update_content", description="Update content"),
            ],
            is_default=True,
        ),
    ]


def render_text(text: str, template: Template, variables: Mapping[str, str]) -> str:
    """
    Substitute `{name}` placeholders.

    Supplied values win, then the template's declared defaults; unknown
    placeholders are left as written.
    """
    defaults = {v.name: v.default_value for v in template.variables}

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        if name in defaults:
            return defaults[name]
        return match.group(0)

    return _PLACEHOLDER.sub(_sub, text)


def render(template: Template, variables: Mapping[str, str]) -> tuple[str, str]:
    """Returns (subject, content)."""
    return (
        render_text(template.subject, template, variables),
        render_text(template.content, template, variables),
    )
