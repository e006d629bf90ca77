"""Role profile models and loader exports."""

from .loader import ProfileLoadError, ProfileLoader
from .models import DEFAULT_ROLE_PROFILES, RoleProfile

__all__ = [
    "DEFAULT_ROLE_PROFILES",
    "ProfileLoadError",
    "ProfileLoader",
    "RoleProfile",
]
