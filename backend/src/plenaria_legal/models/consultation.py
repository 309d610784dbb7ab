"""
Consultation and Message models for Plenaria Legal.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from plenaria_legal.core.timeutils import utcnow
from plenaria_legal.models.base import Base


class ConsultationStatus:
    """Lifecycle states of a consultation."""

    REQUESTED = "REQUESTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"

    ALL = (REQUESTED, ACCEPTED, REJECTED, IN_PROGRESS, FINISHED, CANCELLED)
    TERMINAL = (REJECTED, FINISHED, CANCELLED)
    WITH_LAWYER = (ACCEPTED, REJECTED, IN_PROGRESS, FINISHED)
    MESSAGING = (ACCEPTED, IN_PROGRESS)


class Consultation(Base):
    """
    A customer's request for legal help.

    ``lawyer_id`` is set exactly when the status is one of
    ``ConsultationStatus.WITH_LAWYER``. ``response_by`` is written once at
    creation and never updated.
    """
    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lawyer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=ConsultationStatus.REQUESTED, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    attachments = Column(JSON, nullable=False, default=list)
    response_by = Column(DateTime, nullable=True, index=True)
    start_at = Column(DateTime, nullable=True)
    end_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    session_duration = Column(Integer, nullable=True)  # minutes
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    customer = relationship("User", foreign_keys=[customer_id], back_populates="consultations")
    lawyer = relationship("User", foreign_keys=[lawyer_id])
    messages = relationship("Message", back_populates="consultation", order_by="Message.created_at")

    __table_args__ = (
        Index("ix_consultations_customer_status", "customer_id", "status"),
        Index("ix_consultations_lawyer_status", "lawyer_id", "status"),
    )

    def __repr__(self):
        return f"<Consultation(id={self.id}, customer_id={self.customer_id}, status='{self.status}')>"

    def is_sla_breach(self, now) -> bool:
        """Still unanswered past its response deadline."""
        if self.response_by is None or self.status != ConsultationStatus.REQUESTED:
            return False
        return now > self.response_by


class Message(Base):
    """One chat utterance within a consultation. Immutable apart from ``read_at``."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    consultation_id = Column(Integer, ForeignKey("consultations.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    attachments = Column(JSON, nullable=False, default=list)
    delivered_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    consultation = relationship("Consultation", back_populates="messages")
    sender = relationship("User")

    __table_args__ = (
        Index("ix_messages_consultation_created", "consultation_id", "created_at"),
    )

    def __repr__(self):
        return f"<Message(id={self.id}, consultation_id={self.consultation_id}, sender_id={self.sender_id})>"
