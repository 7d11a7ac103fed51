import enum
import logging
from datetime import datetime
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from sakina.database import get_db
from sakina.exceptions import UnauthorizedError, ForbiddenError
from sakina.models.user import User, Role
from sakina.services.auth_service import AuthService
from sakina.utils.security import decode_access_token

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class Capability(str, enum.Enum):
    MANAGE_PACKAGES = "manage_packages"
    MANAGE_COUPONS = "manage_coupons"
    MANAGE_CONTENT = "manage_content"
    MANAGE_USERS = "manage_users"
    MANAGE_PAYMENTS = "manage_payments"
    VIEW_ANALYTICS = "view_analytics"
    UPLOAD_FILES = "upload_files"
    RUN_JOBS = "run_jobs"


ROLE_CAPABILITIES = {
    Role.USER: frozenset(),
    Role.ADMIN: frozenset(Capability),
}


def role_has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(Role(role), frozenset())


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to an active, non-banned user"""
    if credentials is None:
        raise UnauthorizedError("Not authenticated")

    token = credentials.credentials
    payload = decode_access_token(token)
    if payload is None or "sub" not in payload:
        raise UnauthorizedError("Invalid or expired token")

    if AuthService.is_token_blacklisted(token):
        raise UnauthorizedError("Token has been revoked")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid or expired token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None or user.is_deleted:
        raise UnauthorizedError("User not found")

    was_banned = bool(user.is_banned)
    if user.is_currently_banned(datetime.utcnow()):
        raise ForbiddenError("Your account has been banned", extra={"reason": user.ban_reason})
    if was_banned:
        # Temporary ban expired; persist the lift
        db.commit()
        logger.info(f"🔓 Ban lifted automatically for user {user.id}")

    return user


def require_capability(capability: Capability):
    """Dependency factory: current user must hold ``capability`` through their role"""

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if not role_has_capability(current_user.role, capability):
            logger.warning(f"🚫 User {current_user.id} lacks capability {capability.value}")
            raise ForbiddenError("Admin access required")
        return current_user

    return checker


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Current user when a valid token is sent, otherwise None (anonymous browsing)"""
    if credentials is None:
        return None
    try:
        return get_current_user(credentials, db)
    except UnauthorizedError:
        return None
