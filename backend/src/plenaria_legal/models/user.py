"""
User model for Plenaria Legal.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from plenaria_legal.core.constants import (
    ROLE_ADMIN, ROLE_CUSTOMER, ROLE_LAWYER, USER_ACTIVE, USER_PENDING, USER_SUSPENDED,
)
from plenaria_legal.core.timeutils import utcnow

from .base import Base


def default_status_for_role(role: str) -> str:
    """Lawyers start pending until an admin approves them."""
    return USER_PENDING if role == ROLE_LAWYER else USER_ACTIVE


class User(Base):
    """User model with role-based access control."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(32), nullable=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default=ROLE_CUSTOMER, nullable=False)
    status = Column(String(20), default=USER_ACTIVE, nullable=False, index=True)
    plan = Column(String(20), nullable=True)
    plan_expires_at = Column(DateTime, nullable=True)
    trial_expires_at = Column(DateTime, nullable=True)
    is_on_trial = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    consultations = relationship(
        "Consultation", back_populates="customer", foreign_keys="Consultation.customer_id"
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}', status='{self.status}')>"

    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def is_lawyer(self) -> bool:
        return self.role == ROLE_LAWYER

    def is_customer(self) -> bool:
        return self.role == ROLE_CUSTOMER

    def is_active(self) -> bool:
        return self.status == USER_ACTIVE

    def is_suspended(self) -> bool:
        return self.status == USER_SUSPENDED

    @property
    def trial_active(self) -> bool:
        if not self.is_on_trial or not self.trial_expires_at:
            return False
        return utcnow() < self.trial_expires_at

    @property
    def plan_active(self) -> bool:
        """A plan without expiry never lapses."""
        if not self.plan_expires_at:
            return True
        return utcnow() < self.plan_expires_at
