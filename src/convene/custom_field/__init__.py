"""
Custom Field

This module provides audience custom fields, their inheritance down the
audience tree, and per-user field values.
"""

from convene.custom_field.options import (
    get_dependent_choices,
    get_field_choices,
    get_validation_rules,
)
from convene.custom_field.repository import FIELD_TYPES, VALIDATION_FORMATS, CustomFieldRepository
from convene.custom_field.user_data import UserFieldDataRepository

__all__ = [
    "CustomFieldRepository",
    "UserFieldDataRepository",
    "FIELD_TYPES",
    "VALIDATION_FORMATS",
    "get_field_choices",
    "get_dependent_choices",
    "get_validation_rules",
]
