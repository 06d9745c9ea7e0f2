"""
Audience

This module provides the audience tree and audience membership.
"""

from convene.audience.membership import MembershipRepository
from convene.audience.repository import ROOT, AudienceRepository

__all__ = ["AudienceRepository", "MembershipRepository", "ROOT"]
