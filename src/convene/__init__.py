"""
Convene

Persistence core for audience hierarchies, memberships, inherited custom
fields and audience-scoped bookings.
"""

__version__ = "0.1.0"
