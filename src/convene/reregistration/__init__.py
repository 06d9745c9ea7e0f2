"""
Re-registration

This module provides re-registration campaigns, which ask the members of an
audience subtree to confirm their data within a date window.
"""

from convene.reregistration.repository import STATUSES, ReregistrationRepository

__all__ = ["ReregistrationRepository", "STATUSES"]
