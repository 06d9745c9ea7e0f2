"""
Environment

This module provides bookable environments, their holidays and working hours.
"""

from convene.environment.repository import EnvironmentRepository
from convene.environment.working_hours import (
    fits_working_hours,
    get_day_ranges,
    is_within_working_hours,
    is_working_day,
)

__all__ = [
    "EnvironmentRepository",
    "fits_working_hours",
    "get_day_ranges",
    "is_within_working_hours",
    "is_working_day",
]
