"""Readers for the structured options stored on a custom field."""

from convene.values import decode_json


def _options(field) -> dict:
    raw = field["field_options"] if isinstance(field, dict) and "field_options" in field else field
    options = decode_json(raw, {})
    return options if isinstance(options, dict) else {}


def get_field_choices(field) -> list:
    """Choices of a select field: ``options["choices"]``, or []."""
    choices = _options(field).get("choices")
    return choices if isinstance(choices, list) else []


def get_dependent_choices(field) -> dict:
    """Parent value to child choices of a dependent_select field, or {}."""
    groups = _options(field).get("groups")
    return groups if isinstance(groups, dict) else {}


def get_validation_rules(field) -> dict:
    raw = (
        field["validation_rules"]
        if isinstance(field, dict) and "validation_rules" in field
        else field
    )
    rules = decode_json(raw, {})
    return rules if isinstance(rules, dict) else {}
