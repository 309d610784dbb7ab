"""
Message store for consultation chats.

Messages are append-only. Appending a message also stamps the owning
consultation's ``last_activity_at``; concurrent senders only contend on that
timestamp, which is last-writer-wins.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from plenaria_legal.core.exceptions import StateConflictError, ValidationError
from plenaria_legal.models import Consultation, ConsultationStatus, Message
from plenaria_legal.schemas import MessageResponse, MessageSender

logger = logging.getLogger(__name__)


def normalize_text(text: Optional[str]) -> str:
    """Strip surrounding whitespace; empty results are rejected."""
    cleaned = (text or '').strip()
    if not cleaned:
        raise ValidationError("Message cannot be empty", details={"field": "text"})
    return cleaned


def normalize_attachments(attachments: Optional[List[str]]) -> List[str]:
    """Attachments are stored as a list of string references."""
    items = list(attachments or [])
    if not all(isinstance(item, str) for item in items):
        raise ValidationError("Attachments must be strings", details={"field": "attachments"})
    return items


class MessageStore:
    """Persistence for chat messages tied to a consultation."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        consultation_id: int,
        sender_id: int,
        text: str,
        attachments: Optional[List[str]],
        now: datetime,
    ) -> Message:
        """
        Persist a message and bump the consultation's activity timestamp.

        The activity update doubles as the status guard: it only matches while
        the consultation accepts messages, so a session finished concurrently
        rejects the message instead of storing it. The message is considered
        delivered on persistence.

        Raises:
            ValidationError: If the text is empty after trimming
            StateConflictError: If the consultation no longer accepts messages
        """
        cleaned = normalize_text(text)
        attachments = normalize_attachments(attachments)

        updated = self.db.query(Consultation).filter(
            Consultation.id == consultation_id,
            Consultation.status.in_(ConsultationStatus.MESSAGING),
        ).update(
            {Consultation.last_activity_at: now, Consultation.updated_at: now},
            synchronize_session=False,
        )
        if updated != 1:
            self.db.rollback()
            current = self.db.query(Consultation.status).filter(Consultation.id == consultation_id).scalar()
            raise StateConflictError("Consultation is not active", current_status=current)

        message = Message(
            consultation_id=consultation_id,
            sender_id=sender_id,
            text=cleaned,
            attachments=attachments,
            delivered_at=now,
            created_at=now,
        )
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)

        logger.info(f"Stored message {message.id} in consultation {consultation_id}")
        return message

    def add_opening(self, consultation: Consultation, text: str, now: datetime) -> Message:
        """Stage the customer's request text as the first message of a new consultation."""
        message = Message(
            consultation=consultation,
            sender_id=consultation.customer_id,
            text=normalize_text(text),
            attachments=[],
            delivered_at=now,
            created_at=now,
        )
        self.db.add(message)
        return message

    def list_for(self, consultation_id: int) -> List[Message]:
        """Messages of a consultation, oldest first."""
        return self.db.query(Message).options(joinedload(Message.sender)).filter(
            Message.consultation_id == consultation_id
        ).order_by(Message.created_at.asc(), Message.id.asc()).all()

    def count_for(self, consultation_id: int) -> int:
        return self.db.query(Message).filter(Message.consultation_id == consultation_id).count()


def to_message_response(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        consultation_id=message.consultation_id,
        sender=MessageSender.model_validate(message.sender),
        content=message.text,
        attachments=list(message.attachments or []),
        is_read=message.read_at is not None,
        delivered_at=message.delivered_at,
        read_at=message.read_at,
        created_at=message.created_at,
    )
