import hashlib
import time
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from google.oauth2 import id_token
from google.auth.transport import requests
from sakina.models.user import User, AuthProvider
from sakina.schemas.auth import RegisterRequest
from sakina.utils.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    create_refresh_token,
    decode_token,
    REFRESH_TOKEN_TYPE,
)
from sakina.utils.redis_client import get_redis
from sakina.exceptions import ValidationError, UnauthorizedError, ForbiddenError, ConflictError
from sakina.config import settings
import redis

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "auth:blacklist:"


class AuthService:
    @staticmethod
    def register_user(db: Session, user_data: RegisterRequest) -> User:
        """
        Register a new user with email or phone plus password

        Raises:
            ValidationError: If neither email nor phone is given
            ConflictError: If the email or phone is already registered
        """
        if not user_data.email and not user_data.phone:
            raise ValidationError("Email or phone is required")

        if user_data.email:
            if db.query(User).filter(User.email == user_data.email).first():
                logger.warning(f"Registration attempt with existing email: {user_data.email}")
                raise ConflictError("Email already registered")

        if user_data.phone:
            if db.query(User).filter(User.phone == user_data.phone).first():
                logger.warning(f"Registration attempt with existing phone: {user_data.phone}")
                raise ConflictError("Phone already registered")

        new_user = User(
            email=user_data.email,
            phone=user_data.phone,
            name=user_data.name,
            hashed_password=get_password_hash(user_data.password),
            auth_provider=AuthProvider.EMAIL if user_data.email else AuthProvider.PHONE,
            is_verified=False,
            fcm_tokens=[],
        )

        db.add(new_user)
        db.commit()
        db.refresh(new_user)

        logger.info(f"New user registered: {new_user.email or new_user.phone} (ID: {new_user.id})")
        return new_user

    @staticmethod
    def authenticate_user(
        db: Session,
        password: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        """
        Authenticate user with email or phone and password

        Raises:
            UnauthorizedError: If credentials are wrong or the account is deleted
            ForbiddenError: If the account is banned
        """
        identifier = email or phone
        if not identifier:
            raise ValidationError("Email or phone is required")

        query = db.query(User)
        user = query.filter(User.email == email).first() if email else query.filter(User.phone == phone).first()

        if not user or user.is_deleted:
            logger.warning(f"Login attempt for non-existent user: {identifier}")
            raise UnauthorizedError("Incorrect credentials")

        if user.auth_provider == AuthProvider.GOOGLE and not user.hashed_password:
            raise ValidationError("Please sign in with google")

        if not verify_password(password, user.hashed_password):
            logger.warning(f"Failed login attempt for user: {identifier}")
            raise UnauthorizedError("Incorrect credentials")

        AuthService._ensure_not_banned(db, user)

        logger.info(f"User authenticated successfully: {identifier}")
        return user

    @staticmethod
    def authenticate_google(db: Session, google_token: str) -> User:
        """Authenticate or register user via a Google ID token"""
        try:
            idinfo = id_token.verify_oauth2_token(
                google_token,
                requests.Request(),
                settings.GOOGLE_CLIENT_ID
            )
        except ValueError as e:
            logger.error(f"Google token validation error: {str(e)}")
            raise UnauthorizedError("Invalid Google token")

        google_id = idinfo['sub']
        email = idinfo.get('email')
        logger.info(f"Google token verified for email: {email}")

        user = db.query(User).filter(User.google_id == google_id).first()
        if not user and email:
            user = db.query(User).filter(User.email == email).first()

        if user:
            if user.is_deleted:
                raise UnauthorizedError("Account has been deleted")
            # Link Google to an existing account with the same verified email
            user.google_id = google_id
            user.avatar_url = user.avatar_url or idinfo.get('picture')
            user.is_verified = True
            AuthService._ensure_not_banned(db, user)
            db.commit()
            db.refresh(user)
            logger.info(f"Existing user logged in with Google: {email}")
        else:
            user = User(
                email=email,
                name=idinfo.get('name', ''),
                google_id=google_id,
                auth_provider=AuthProvider.GOOGLE,
                avatar_url=idinfo.get('picture'),
                is_verified=True,
                fcm_tokens=[],
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info(f"New Google user created: {email} (ID: {user.id})")

        return user

    @staticmethod
    def _ensure_not_banned(db: Session, user: User):
        was_banned = bool(user.is_banned)
        if user.is_currently_banned(datetime.utcnow()):
            logger.warning(f"🚫 Banned user tried to sign in: {user.id}")
            raise ForbiddenError("Your account has been banned", extra={"reason": user.ban_reason})
        if was_banned:
            db.commit()

    # ============================================
    # TOKENS
    # ============================================

    @staticmethod
    def create_tokens(user: User) -> dict:
        claims = {"sub": str(user.id), "role": user.role.value if user.role else "user"}
        return {
            "access_token": create_access_token(claims),
            "refresh_token": create_refresh_token({"sub": str(user.id)}),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        }

    @staticmethod
    def refresh_tokens(db: Session, refresh_token: str) -> dict:
        payload = decode_token(refresh_token, REFRESH_TOKEN_TYPE)
        if payload is None or AuthService.is_token_blacklisted(refresh_token):
            raise UnauthorizedError("Invalid or expired refresh token")

        user = db.query(User).filter(User.id == int(payload["sub"])).first()
        if not user or user.is_deleted:
            raise UnauthorizedError("User not found")
        AuthService._ensure_not_banned(db, user)

        # Rotate: the used refresh token cannot be replayed
        AuthService.blacklist_token(refresh_token, payload.get("exp"))
        return AuthService.create_tokens(user)

    @staticmethod
    def logout(access_token: str, refresh_token: Optional[str] = None):
        for token, token_type in ((access_token, "access"), (refresh_token, REFRESH_TOKEN_TYPE)):
            if not token:
                continue
            payload = decode_token(token, token_type)
            if payload:
                AuthService.blacklist_token(token, payload.get("exp"))

    @staticmethod
    def _blacklist_key(token: str) -> str:
        return BLACKLIST_PREFIX + hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def blacklist_token(token: str, exp: Optional[int]):
        """Store the token until its own expiry; after that the JWT is dead anyway"""
        client = get_redis()
        if client is None:
            logger.warning("⚠️ Redis unavailable, token not blacklisted")
            return

        ttl = int(exp - time.time()) if exp else 0
        if ttl <= 0:
            return
        try:
            client.setex(AuthService._blacklist_key(token), ttl, "1")
        except redis.RedisError as e:
            logger.error(f"Failed to blacklist token: {e}")

    @staticmethod
    def is_token_blacklisted(token: str) -> bool:
        client = get_redis()
        if client is None:
            return False
        try:
            return bool(client.exists(AuthService._blacklist_key(token)))
        except redis.RedisError as e:
            logger.error(f"Blacklist lookup failed: {e}")
            return False
