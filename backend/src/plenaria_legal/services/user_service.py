"""
User Service for Plenaria Legal.

Registration, credential checks and token refresh.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from plenaria_legal.core.config import ConsultationConfig, get_config
from plenaria_legal.core.constants import ROLE_CUSTOMER, ROLE_LAWYER, USER_ACTIVE, USER_PENDING
from plenaria_legal.core.database import storage_guard
from plenaria_legal.core.exceptions import AuthenticationError, AuthorizationError, ValidationError
from plenaria_legal.core.security import (
    REFRESH_TOKEN, create_token_pair, get_password_hash, user_id_from_token, verify_password,
)
from plenaria_legal.core.timeutils import utcnow
from plenaria_legal.models import User
from plenaria_legal.models.user import default_status_for_role
from plenaria_legal.schemas import AuthResponse, RegisterRequest, UserResponse
from plenaria_legal.services.notification_service import NotificationService, notification_service

logger = logging.getLogger(__name__)


class UserService:
    """Service for accounts and authentication."""

    def __init__(
        self,
        db: Session,
        settings: Optional[ConsultationConfig] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.settings = settings or get_config().consultation
        self.notifier = notifier or notification_service

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def register(self, data: RegisterRequest, now: Optional[datetime] = None) -> User:
        """
        Create a customer or lawyer account.

        Customers must pick a plan and start on a trial. Lawyers start PENDING
        until an admin approves them.

        Raises:
            ValidationError: If the email is taken or a customer has no plan
        """
        now = now or utcnow()
        min_length = get_config().security.min_password_length
        if len(data.password) < min_length:
            raise ValidationError(
                f"Password must be at least {min_length} characters", details={"field": "password"}
            )
        if self.get_by_email(data.email):
            raise ValidationError("Email already registered", details={"field": "email"})

        user = User(
            email=data.email,
            phone=data.phone or None,
            password_hash=get_password_hash(data.password),
            role=data.role,
            status=default_status_for_role(data.role),
            created_at=now,
            updated_at=now,
        )

        if data.role == ROLE_CUSTOMER:
            if not data.plan:
                raise ValidationError("Plan is required for customer registration", details={"field": "plan"})
            user.plan = data.plan
            user.is_on_trial = True
            user.trial_expires_at = now + timedelta(days=self.settings.customer_trial_days)

        with storage_guard(self.db, "register user"):
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)

        logger.info(f"Registered {user.role} {user.email} (id={user.id}, status={user.status})")
        if user.role == ROLE_LAWYER:
            self.notifier.notify_admins_pending_lawyer(user.email)
        return user

    def authenticate(self, identifier: str, password: str) -> User:
        """
        Resolve credentials where ``identifier`` is an email or a phone number.

        Raises:
            AuthenticationError: If no account matches the credentials
            AuthorizationError: If the account is suspended
        """
        identifier = identifier.strip()
        user = self.db.query(User).filter(
            or_(User.email == identifier.lower(), User.phone == identifier)
        ).first()
        if user is None or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login attempt for {identifier}")
            raise AuthenticationError("Invalid credentials")

        if user.is_suspended():
            raise AuthorizationError("Account suspended. Please contact support.")
        return user

    def refresh(self, refresh_token: str) -> User:
        """Resolve the owner of a refresh token."""
        user = self.db.get(User, user_id_from_token(refresh_token, REFRESH_TOKEN))
        if user is None:
            raise AuthenticationError("User not found")
        if user.is_suspended():
            raise AuthorizationError("Account suspended")
        return user

    def list_active_lawyers(self) -> List[User]:
        return self.db.query(User).filter(
            User.role == ROLE_LAWYER,
            User.status == USER_ACTIVE,
        ).order_by(User.email.asc()).all()


def build_auth_response(user: User) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.model_validate(user),
        is_pending=user.status == USER_PENDING,
        **create_token_pair(user),
    )
