import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from plenaria_legal.core.database import get_db
from plenaria_legal.core.exceptions import AuthenticationError, AuthorizationError
from plenaria_legal.core.response_utils import create_success_response, ResponseTimer
from plenaria_legal.core.security import user_id_from_token
from plenaria_legal.models.user import User
from plenaria_legal.schemas import (
    LawyerSummary, LoginRequest, RefreshRequest, RegisterRequest, StandardResponse, UserResponse,
)
from plenaria_legal.services.user_service import UserService, build_auth_response

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

router = APIRouter()


def resolve_user(db: Session, token: Optional[str]) -> User:
    """
    Load the user behind an access token.

    Raises:
        AuthenticationError: If the token is missing or invalid, or the user is gone
        AuthorizationError: If the account is suspended
    """
    if not token:
        raise AuthenticationError("Authentication required")

    user = db.get(User, user_id_from_token(token))
    if user is None:
        raise AuthenticationError("User not found")
    if user.is_suspended():
        raise AuthorizationError("Account suspended")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user."""
    return resolve_user(db, credentials.credentials if credentials else None)


def require_roles(*roles: str):
    """Dependency factory restricting a route to the given roles."""

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise AuthorizationError(
                "Insufficient permissions",
                details={"required_roles": list(roles), "role": current_user.role},
            )
        return current_user

    return checker


@router.post("/register", response_model=StandardResponse, status_code=201)
async def register(data: RegisterRequest, db: Session = Depends(get_db)):
    """Register a new customer or lawyer."""
    with ResponseTimer() as timer:
        user = UserService(db).register(data)
        return create_success_response(
            data=build_auth_response(user),
            status_code=201,
            execution_time=timer.get_execution_time()
        )


@router.post("/login", response_model=StandardResponse)
async def login(data: LoginRequest, db: Session = Depends(get_db)):
    """Login with email or phone and password."""
    with ResponseTimer() as timer:
        user = UserService(db).authenticate(data.identifier, data.password)
        logger.info(f"User logged in: {user.email}")
        return create_success_response(
            data=build_auth_response(user),
            status_code=200,
            execution_time=timer.get_execution_time()
        )


@router.post("/refresh", response_model=StandardResponse)
async def refresh_tokens(data: RefreshRequest, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new token pair."""
    with ResponseTimer() as timer:
        user = UserService(db).refresh(data.refresh_token)
        return create_success_response(
            data=build_auth_response(user),
            status_code=200,
            execution_time=timer.get_execution_time()
        )


@router.post("/logout", response_model=StandardResponse)
async def logout(current_user: User = Depends(get_current_user)):
    """Tokens are stateless; the client discards them."""
    with ResponseTimer() as timer:
        logger.info(f"User logged out: {current_user.email}")
        return create_success_response(
            data=None,
            message="Logout successful",
            execution_time=timer.get_execution_time()
        )


@router.get("/me", response_model=StandardResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    with ResponseTimer() as timer:
        return create_success_response(
            data=UserResponse.model_validate(current_user),
            execution_time=timer.get_execution_time()
        )


@router.get("/lawyers", response_model=StandardResponse)
async def list_lawyers(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Active lawyers available for pre-selection."""
    with ResponseTimer() as timer:
        lawyers = UserService(db).list_active_lawyers()
        return create_success_response(
            data=[LawyerSummary.model_validate(lawyer) for lawyer in lawyers],
            execution_time=timer.get_execution_time()
        )
