"""Customer identity and points account services."""

from .accounts import PointsAccountService
from .customers import ensure_app_user, find_app_user, require_app_user

__all__ = ["PointsAccountService", "ensure_app_user", "find_app_user", "require_app_user"]
