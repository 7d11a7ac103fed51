from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.schemas.auth import RegisterRequest, LoginRequest, GoogleAuthRequest, RefreshRequest, LogoutRequest
from sakina.schemas.user import UserResponse
from sakina.services.auth_service import AuthService
from sakina.utils.dependencies import get_current_user, security
from sakina.utils.responses import success_response
from sakina.models.user import User

router = APIRouter(prefix=f"{settings.API_PREFIX}/auth", tags=["Authentication"])


def _auth_payload(user: User) -> dict:
    return {
        "user": UserResponse.model_validate(user).model_dump(),
        **AuthService.create_tokens(user),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(user_data: RegisterRequest, db: Session = Depends(get_db)):
    """Register a new user with email or phone and password"""
    user = AuthService.register_user(db, user_data)
    return success_response(_auth_payload(user), "Registration successful", status.HTTP_201_CREATED)


@router.post("/login")
async def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    """Login with email or phone and password"""
    user = AuthService.authenticate_user(db, login_data.password, email=login_data.email, phone=login_data.phone)
    return success_response(_auth_payload(user), "Login successful")


@router.post("/google")
async def google_auth(auth_data: GoogleAuthRequest, db: Session = Depends(get_db)):
    """Authenticate with a Google ID token"""
    user = AuthService.authenticate_google(db, auth_data.token)
    return success_response(_auth_payload(user), "Login successful")


@router.post("/refresh")
async def refresh(body: RefreshRequest, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new token pair"""
    tokens = AuthService.refresh_tokens(db, body.refresh_token)
    return success_response(tokens, "Token refreshed")


@router.post("/logout")
async def logout(
    body: LogoutRequest = LogoutRequest(),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    current_user: User = Depends(get_current_user),
):
    """Revoke the current access token and, if given, the refresh token"""
    AuthService.logout(credentials.credentials, body.refresh_token)
    return success_response(None, "Logged out")


@router.get("/me")
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return success_response(UserResponse.model_validate(current_user).model_dump())
