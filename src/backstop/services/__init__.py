from .auth import AuthService as AuthService
from .resources import ResourceService as ResourceService

__all__ = ["AuthService", "ResourceService"]
