"""Idea validation, normalisation and prompt construction."""

import re

from composer_automation.errors import IdeaValidationError
from composer_automation.models import ApplicationType, Idea


def slugify(title: str) -> str:
    """Convert a title to a filesystem-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def validate_idea(data: dict, strict: bool = True) -> None:
    """Check the structure of a raw idea mapping. Raises IdeaValidationError.

    The strict policy (used by the orchestrator) additionally requires at
    least one feature; the lenient policy accepts an empty feature list.
    """
    if not isinstance(data, dict):
        raise IdeaValidationError("Idea must be a JSON object")

    name = data.get("name")
    if not name or not isinstance(name, str) or not name.strip():
        raise IdeaValidationError("Idea name must be a non-empty string")

    title = data.get("title")
    if title is not None and not isinstance(title, str):
        raise IdeaValidationError("Idea title must be a string")

    description = data.get("description")
    if not description or not isinstance(description, str) or not description.strip():
        raise IdeaValidationError("Idea description must be a non-empty string")

    app_type = _application_type_value(data)
    if app_type is None:
        raise IdeaValidationError("Application type is required")
    try:
        ApplicationType.parse(app_type)
    except ValueError:
        raise IdeaValidationError(f"Invalid application type: {app_type}") from None

    features = data.get("features")
    if features is not None and not _is_str_list(features):
        raise IdeaValidationError("Features must be a list of strings")
    if strict and not features:
        raise IdeaValidationError("At least one feature is required")

    for key, label in (
        ("technologies", "Technologies"),
        ("frameworks", "Frameworks"),
        ("dependencies", "Dependencies"),
    ):
        value = data.get(key)
        if value is not None and not _is_str_list(value):
            raise IdeaValidationError(f"{label} must be a list of strings")

    context = data.get("additionalContext")
    if context is not None and not isinstance(context, str):
        raise IdeaValidationError("Additional context must be a string")

    targets = _targets_value(data)
    if targets is not None and not _is_str_list(targets):
        raise IdeaValidationError("Deployment targets must be a list")

    settings = _settings_value(data)
    if settings is not None and not isinstance(settings, dict):
        raise IdeaValidationError("Deployment settings must be an object")


def parse_idea(data: dict | Idea, strict: bool = True) -> Idea:
    """Validate a raw idea and return the normalised, immutable Idea."""
    if isinstance(data, Idea):
        data = data.to_dict()

    validate_idea(data, strict=strict)

    name = data["name"].strip()
    return Idea(
        name=name,
        title=(data.get("title") or "").strip() or name,
        description=data["description"].strip(),
        application_type=ApplicationType.parse(_application_type_value(data)),
        features=tuple(data.get("features") or ()),
        technologies=_technologies_value(data),
        dependencies=tuple(data.get("dependencies") or ()),
        deployment_targets=tuple(_targets_value(data) or ()),
        deployment_settings=dict(_settings_value(data) or {}),
        additional_context=(data.get("additionalContext") or "").strip(),
    )


def build_prompt(idea: Idea) -> str:
    """Build the composer prompt for an idea."""
    parts = []
    parts.append(f"# {idea.title}")
    parts.append(f"\n## Description\n{idea.description}")
    parts.append(f"\n## Application Type\n{format_application_type(idea.application_type)}")

    if idea.features:
        parts.append(f"\n## Features\n{_bullets(idea.features)}")

    if idea.technologies:
        parts.append(f"\n## Frameworks/Technologies to Use\n{_bullets(idea.technologies)}")

    if idea.dependencies:
        parts.append(f"\n## Dependencies\n{_bullets(idea.dependencies)}")

    if idea.additional_context:
        parts.append(f"\n## Additional Context\n{idea.additional_context}")

    if idea.deployment_targets:
        parts.append(f"\n## Deployment Targets\n{_bullets(idea.deployment_targets)}")

    parts.append(
        "\nPlease create a complete application based on the above requirements. "
        "The application should be well-structured, follow best practices, "
        "and include appropriate documentation."
    )
    return "\n".join(parts)


def format_application_type(app_type: ApplicationType) -> str:
    return app_type.value.replace("_", " ").title()


# ── Helpers ───────────────────────────────────────────────────────────────────


def _application_type_value(data: dict):
    # "type" is the field name used by older idea files
    return data.get("applicationType", data.get("type"))


def _technologies_value(data: dict) -> tuple[str, ...]:
    # "frameworks" is the field name used by older idea files
    merged = list(data.get("technologies") or ())
    merged += [f for f in data.get("frameworks") or () if f not in merged]
    return tuple(merged)


def _targets_value(data: dict):
    if "deploymentTarget" in data:
        return data["deploymentTarget"]
    if "deploymentTargets" in data:
        return data["deploymentTargets"]
    deployment = data.get("deployment")
    if isinstance(deployment, dict):
        return deployment.get("targets")
    return None


def _settings_value(data: dict):
    if "deploymentSettings" in data:
        return data["deploymentSettings"]
    deployment = data.get("deployment")
    if isinstance(deployment, dict):
        return deployment.get("settings")
    return None


def _is_str_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _bullets(items) -> str:
    return "\n".join(f"- {item}" for item in items)
