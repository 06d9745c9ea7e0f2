from convene.activity.log import LEVELS, ActivityLog

__all__ = ["ActivityLog", "LEVELS"]
