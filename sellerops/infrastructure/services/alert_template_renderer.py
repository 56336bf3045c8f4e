"""Named alert templates: template key -> title/message (Jinja)."""

from __future__ import annotations

from typing import Any

from jinja2 import Environment, Template

# key -> (title_template, message_template)
# Context: entity (entity view), context (trigger context view), data (action params)
_DEFAULT_TEMPLATES: dict[str, tuple[str, str]] = {
    "score_drop": (
        "Score dropped for {{ entity.get('sku') or entity.id }}",
        "Score is now {{ context.get('current_value', 'N/A') }}"
        "{% if context.get('previous_value') is not none %}"
        " (was {{ context.previous_value }}){% endif %}.",
    ),
    "competitor_threat": (
        "Competitor activity on {{ entity.get('asin') or entity.id }}",
        "Event: {{ context.get('event', 'unknown') }}\n"
        "{% if context.get('competitor') %}Competitor: {{ context.competitor }}\n{% endif %}"
        "{% if data.get('note') %}{{ data.note }}{% endif %}",
    ),
    "rule_notification": (
        "Rule fired for {{ entity.id }}",
        "Entity {{ entity.id }} ({{ entity.entity_type }}) matched.\nContext: {{ context }}",
    ),
}


class AlertTemplateRenderer:
    """Renders title and message for send_alert actions from a template key."""

    def __init__(self, templates: dict[str, tuple[str, str]] | None = None) -> None:
        self._templates = templates or _DEFAULT_TEMPLATES
        self._env = Environment(autoescape=False)
        self._compiled: dict[str, tuple[Template, Template]] = {
            key: (self._env.from_string(title), self._env.from_string(message))
            for key, (title, message) in self._templates.items()
        }

    def __contains__(self, template_key: object) -> bool:
        return template_key in self._compiled

    def render(
        self,
        template_key: str,
        entity: dict[str, Any],
        context: dict[str, Any],
        data: dict[str, Any] | None = None,
    ) -> tuple[str, str]:
        """Render title and message. Raises KeyError if key unknown."""
        if template_key not in self._compiled:
            raise KeyError(f"Unknown alert template: {template_key}")
        ctx = {"entity": entity, "context": context, "data": data or {}}
        title_tpl, message_tpl = self._compiled[template_key]
        return title_tpl.render(**ctx), message_tpl.render(**ctx)
