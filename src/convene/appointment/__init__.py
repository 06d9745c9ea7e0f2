"""
Appointment

This module provides self-scheduled calendar appointments and their
status lifecycle.
"""

from convene.appointment.repository import TRANSITIONS, AppointmentRepository

__all__ = ["AppointmentRepository", "TRANSITIONS"]
