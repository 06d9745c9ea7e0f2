"""
Schedule

This module provides audience schedules, which group bookable environments,
and the per-user permissions to book, cancel and override conflicts on them.
"""

from convene.schedule.repository import PERMISSION_FLAGS, VISIBILITIES, ScheduleRepository

__all__ = ["ScheduleRepository", "PERMISSION_FLAGS", "VISIBILITIES"]
