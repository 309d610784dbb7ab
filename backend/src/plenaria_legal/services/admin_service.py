"""
Admin Service for Plenaria Legal.

Lawyer approval, account suspension and customer plan management.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from plenaria_legal.core.constants import (
    PLANS, ROLE_LAWYER, USER_ACTIVE, USER_PENDING, USER_ROLES, USER_STATUSES, USER_SUSPENDED,
)
from plenaria_legal.core.database import storage_guard
from plenaria_legal.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from plenaria_legal.core.timeutils import to_naive_utc, utcnow
from plenaria_legal.models import User
from plenaria_legal.services.notification_service import NotificationService, notification_service

logger = logging.getLogger(__name__)


class AdminService:
    """Service for administrative actions on user accounts."""

    def __init__(self, db: Session, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or notification_service

    def _get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    def _get_pending_lawyer(self, user_id: int) -> User:
        user = self._get_user(user_id)
        if not user.is_lawyer():
            raise ValidationError("User is not a lawyer")
        if user.status != USER_PENDING:
            raise ValidationError("Lawyer is not pending approval", details={"status": user.status})
        return user

    def _save(self, user: User, action: str, now: Optional[datetime] = None) -> User:
        user.updated_at = now or utcnow()
        with storage_guard(self.db, action):
            self.db.commit()
            self.db.refresh(user)
        return user

    def list_users(
        self,
        role: Optional[str] = None,
        status: Optional[str] = None,
        plan: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[User], int]:
        """Filterable user listing, newest first."""
        filters = (("role", role, USER_ROLES), ("status", status, USER_STATUSES), ("plan", plan, PLANS))
        for field, value, allowed in filters:
            if value and value not in allowed:
                raise ValidationError(f"Invalid {field}: {value}", details={"field": field, "allowed": list(allowed)})

        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        if status:
            query = query.filter(User.status == status)
        if plan:
            query = query.filter(User.plan == plan)

        total = query.count()
        users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return users, total

    def list_pending_lawyers(self, page: int = 1, limit: int = 20) -> Tuple[List[User], int]:
        return self.list_users(role=ROLE_LAWYER, status=USER_PENDING, page=page, limit=limit)

    def approve_lawyer(self, admin: User, user_id: int) -> User:
        lawyer = self._get_pending_lawyer(user_id)
        lawyer.status = USER_ACTIVE
        self._save(lawyer, "approve lawyer")

        logger.info(f"Lawyer approved: {lawyer.email} by {admin.email}")
        self.notifier.notify_lawyer_review(lawyer.email, approved=True)
        return lawyer

    def reject_lawyer(self, admin: User, user_id: int, reason: Optional[str] = None) -> User:
        """Rejected registrations are suspended rather than deleted."""
        lawyer = self._get_pending_lawyer(user_id)
        lawyer.status = USER_SUSPENDED
        self._save(lawyer, "reject lawyer")

        logger.info(f"Lawyer rejected: {lawyer.email} by {admin.email}. Reason: {reason or 'None'}")
        self.notifier.notify_lawyer_review(lawyer.email, approved=False, reason=reason)
        return lawyer

    def suspend_user(self, admin: User, user_id: int) -> User:
        user = self._get_user(user_id)
        if user.is_admin():
            raise AuthorizationError("Cannot suspend admin users")
        user.status = USER_SUSPENDED
        self._save(user, "suspend user")
        logger.info(f"User suspended: {user.email} by {admin.email}")
        return user

    def activate_user(self, admin: User, user_id: int) -> User:
        user = self._get_user(user_id)
        if user.is_admin():
            raise AuthorizationError("Cannot change the status of admin users")
        user.status = USER_ACTIVE
        self._save(user, "activate user")
        logger.info(f"User activated: {user.email} by {admin.email}")
        return user

    def change_plan(
        self,
        admin: User,
        user_id: int,
        plan: str,
        plan_expires_at: Optional[datetime] = None,
    ) -> User:
        """Only customers carry plans; an omitted expiry leaves the current one."""
        user = self._get_user(user_id)
        if not user.is_customer():
            raise ValidationError("Only customers have plans")
        if plan not in PLANS:
            raise ValidationError(f"Invalid plan: {plan}", details={"field": "plan"})

        user.plan = plan
        if plan_expires_at is not None:
            user.plan_expires_at = to_naive_utc(plan_expires_at)
        self._save(user, "change plan")
        logger.info(f"User plan changed: {user.email} to {plan} by {admin.email}")
        return user

    def grant_trial(self, admin: User, user_id: int, days: int, now: Optional[datetime] = None) -> User:
        now = now or utcnow()
        user = self._get_user(user_id)
        if not user.is_customer():
            raise ValidationError("Only customers can have trials")

        user.is_on_trial = True
        user.trial_expires_at = now + timedelta(days=days)
        self._save(user, "grant trial", now)
        logger.info(f"Trial granted: {user.email} for {days} days by {admin.email}")
        return user
