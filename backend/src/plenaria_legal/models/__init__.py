"""
Database models.
"""

# Import all models to ensure they are registered with SQLAlchemy
from .base import Base
from .user import User
from .consultation import Consultation, ConsultationStatus, Message

__all__ = ["Base", "User", "Consultation", "ConsultationStatus", "Message"]
