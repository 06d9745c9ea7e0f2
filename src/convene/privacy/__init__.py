from convene.privacy.service import PrivacyService

__all__ = ["PrivacyService"]
