"""
Consultation Service for Plenaria Legal.

This module owns the consultation lifecycle. The synchronous API and the live
channel both call into ``ConsultationService`` so every transition guard is
defined once:

    REQUESTED -> ACCEPTED | IN_PROGRESS | REJECTED | CANCELLED
    ACCEPTED  -> (messaging)
    IN_PROGRESS -> FINISHED

Every status change is a single conditional UPDATE keyed by id and expected
status, so two lawyers racing on the same request produce one winner and one
``StateConflictError``.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from plenaria_legal.core.config import ConsultationConfig, get_config
from plenaria_legal.core.database import storage_guard
from plenaria_legal.core.exceptions import (
    AuthorizationError, NotFoundError, QuotaExceededError, StateConflictError, ValidationError,
)
from plenaria_legal.core.timeutils import minutes_between, round_half_up, utcnow
from plenaria_legal.models import Consultation, ConsultationStatus, Message, User
from plenaria_legal.schemas import (
    ConsultationCreate, ConsultationResponse, LawyerSummary, UserContact,
)
from plenaria_legal.services.access_policy import evaluate_access, list_filter
from plenaria_legal.services.message_service import MessageStore
from plenaria_legal.services.notification_service import NotificationService, notification_service
from plenaria_legal.services.quota_service import QuotaEvaluator, QuotaStatus

logger = logging.getLogger(__name__)


class ConsultationService:
    """Service for the consultation state machine."""

    def __init__(
        self,
        db: Session,
        settings: Optional[ConsultationConfig] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.settings = settings or get_config().consultation
        self.notifier = notifier or notification_service
        self.messages = MessageStore(db)
        self.quota = QuotaEvaluator(db, self.settings)

    # Reads

    def _load(self, consultation_id: int) -> Consultation:
        consultation = self.db.query(Consultation).options(
            joinedload(Consultation.customer),
            joinedload(Consultation.lawyer),
        ).filter(Consultation.id == consultation_id).first()
        if consultation is None:
            raise NotFoundError("Consultation not found", details={"consultation_id": consultation_id})
        return consultation

    def get_for(self, actor: User, consultation_id: int) -> Consultation:
        """Load a consultation the actor is allowed to see."""
        consultation = self._load(consultation_id)
        if not evaluate_access(actor, consultation).visible:
            raise AuthorizationError("Access denied")
        return consultation

    def list_for(
        self,
        actor: User,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Consultation], int]:
        """Page through the consultations visible to ``actor``, newest first."""
        if status and status not in ConsultationStatus.ALL:
            raise ValidationError(
                f"Invalid status: {status}",
                details={"field": "status", "allowed": list(ConsultationStatus.ALL)},
            )

        query = self.db.query(Consultation).filter(*list_filter(actor, status))
        total = query.count()
        items = query.options(
            joinedload(Consultation.customer),
            joinedload(Consultation.lawyer),
        ).order_by(
            Consultation.created_at.desc(), Consultation.id.desc()
        ).offset((page - 1) * limit).limit(limit).all()
        return items, total

    def list_messages(self, actor: User, consultation_id: int) -> List[Message]:
        """Chat history, readable by participants and admins."""
        consultation = self._load(consultation_id)
        access = evaluate_access(actor, consultation)
        if not (access.participant or actor.is_admin()):
            raise AuthorizationError("Access denied")
        return self.messages.list_for(consultation.id)

    def to_response(
        self,
        consultation: Consultation,
        actor: Optional[User] = None,
        now: Optional[datetime] = None,
    ) -> ConsultationResponse:
        """Serialize a consultation, hiding contact blocks from parties without standing."""
        now = now or utcnow()
        contacts_visible = actor is None or evaluate_access(actor, consultation).contacts_visible

        customer = None
        lawyer = None
        if contacts_visible:
            if consultation.customer is not None:
                customer = UserContact.model_validate(consultation.customer)
            if consultation.lawyer is not None:
                lawyer = LawyerSummary.model_validate(consultation.lawyer)

        return ConsultationResponse(
            id=consultation.id,
            customer_id=consultation.customer_id,
            lawyer_id=consultation.lawyer_id,
            status=consultation.status,
            title=consultation.title,
            description=consultation.description,
            question=consultation.description,
            attachments=list(consultation.attachments or []),
            response_by=consultation.response_by,
            start_at=consultation.start_at,
            end_at=consultation.end_at,
            last_activity_at=consultation.last_activity_at,
            rejection_reason=consultation.rejection_reason,
            session_duration=consultation.session_duration,
            created_at=consultation.created_at,
            updated_at=consultation.updated_at,
            is_sla_breach=consultation.is_sla_breach(now),
            customer=customer,
            lawyer=lawyer,
        )

    # Commands

    def create(
        self,
        customer: User,
        data: ConsultationCreate,
        now: Optional[datetime] = None,
    ) -> Tuple[Consultation, QuotaStatus]:
        """
        Open a new consultation for ``customer``.

        The quota is evaluated against the store on every call. With a
        pre-selected lawyer the consultation starts ACCEPTED; otherwise it is
        REQUESTED and every lawyer is notified. The request text becomes the
        first chat message.

        Returns:
            The new consultation and the quota snapshot after creation

        Raises:
            QuotaExceededError: If the monthly cap is reached
            ValidationError: If the selected lawyer is not an active lawyer
        """
        now = now or utcnow()
        if not customer.is_customer():
            raise AuthorizationError("Only customers can create consultations")

        quota = self.quota.check(customer.id, now)
        if not quota.has_quota:
            raise QuotaExceededError(
                "Monthly consultation quota exceeded",
                quota=quota.to_response().model_dump(),
            )

        lawyer = None
        if data.lawyer_id is not None:
            lawyer = self.db.get(User, data.lawyer_id)
            if lawyer is None or not lawyer.is_lawyer() or not lawyer.is_active():
                raise ValidationError("Selected lawyer is not available", details={"field": "lawyer_id"})

        text = data.text
        consultation = Consultation(
            customer_id=customer.id,
            status=ConsultationStatus.REQUESTED,
            title=(data.title or '').strip() or self.settings.default_consultation_title,
            description=text,
            attachments=list(data.attachments),
            response_by=now + timedelta(hours=self.settings.sla_response_hours),
            created_at=now,
            updated_at=now,
        )
        if lawyer is not None:
            consultation.status = ConsultationStatus.ACCEPTED
            consultation.lawyer_id = lawyer.id
            consultation.start_at = now
            consultation.last_activity_at = now

        with storage_guard(self.db, "create consultation"):
            self.db.add(consultation)
            self.messages.add_opening(consultation, text, now)
            self.db.commit()
            self.db.refresh(consultation)

        logger.info(
            f"Consultation {consultation.id} created by customer {customer.id} "
            f"with status {consultation.status}"
        )
        if lawyer is not None:
            self.notifier.notify_lawyer_direct_assignment(consultation.id, lawyer.id)
        else:
            self.notifier.notify_lawyers_new_request(consultation.id)

        return consultation, self.quota.check(customer.id, now)

    def accept(
        self,
        lawyer: User,
        consultation_id: int,
        now: Optional[datetime] = None,
        live: bool = False,
    ) -> Consultation:
        """
        Assign a REQUESTED consultation to ``lawyer``.

        The API path moves it to ACCEPTED. The live path starts the session
        straight away (IN_PROGRESS with ``start_at`` and ``last_activity_at``).
        """
        now = now or utcnow()
        if not lawyer.is_lawyer():
            raise AuthorizationError("Only lawyers can accept consultations")
        if self.settings.require_active_lawyer_for_accept and not lawyer.is_active():
            raise AuthorizationError("Lawyer account is not active")

        self._load(consultation_id)

        values: Dict[Any, Any] = {
            Consultation.lawyer_id: lawyer.id,
            Consultation.updated_at: now,
        }
        if live:
            values.update({
                Consultation.status: ConsultationStatus.IN_PROGRESS,
                Consultation.start_at: now,
                Consultation.last_activity_at: now,
            })
        else:
            values[Consultation.status] = ConsultationStatus.ACCEPTED

        consultation = self._compare_and_set(
            consultation_id, ConsultationStatus.REQUESTED, values, "Consultation already handled"
        )
        logger.info(f"Lawyer {lawyer.id} accepted consultation {consultation_id} ({consultation.status})")
        self.notifier.notify_customer_status_change(consultation.id, consultation.customer_id, consultation.status)
        return consultation

    def reject(
        self,
        lawyer: User,
        consultation_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Consultation:
        """Decline a REQUESTED consultation; the rejecting lawyer is recorded."""
        now = now or utcnow()
        if not lawyer.is_lawyer():
            raise AuthorizationError("Only lawyers can reject consultations")

        self._load(consultation_id)

        reason = (reason or '').strip() or None
        consultation = self._compare_and_set(
            consultation_id,
            ConsultationStatus.REQUESTED,
            {
                Consultation.status: ConsultationStatus.REJECTED,
                Consultation.lawyer_id: lawyer.id,
                Consultation.rejection_reason: reason,
                Consultation.updated_at: now,
            },
            "Consultation already handled",
        )
        logger.info(f"Lawyer {lawyer.id} rejected consultation {consultation_id}")
        self.notifier.notify_customer_status_change(consultation.id, consultation.customer_id, consultation.status)
        return consultation

    def cancel(self, customer: User, consultation_id: int, now: Optional[datetime] = None) -> Consultation:
        """Withdraw a consultation before any lawyer has taken it."""
        now = now or utcnow()
        consultation = self._load(consultation_id)
        if not customer.is_customer() or consultation.customer_id != customer.id:
            raise AuthorizationError("Only the owning customer can cancel this consultation")

        consultation = self._compare_and_set(
            consultation_id,
            ConsultationStatus.REQUESTED,
            {
                Consultation.status: ConsultationStatus.CANCELLED,
                Consultation.updated_at: now,
            },
            "Only requested consultations can be cancelled",
        )
        logger.info(f"Customer {customer.id} cancelled consultation {consultation_id}")
        return consultation

    def send_message(
        self,
        actor: User,
        consultation_id: int,
        text: Optional[str],
        attachments: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> Message:
        """Append a chat message from the customer or the assigned lawyer."""
        now = now or utcnow()
        consultation = self._load(consultation_id)
        if not evaluate_access(actor, consultation).participant:
            raise AuthorizationError("Access denied")

        with storage_guard(self.db, "store message"):
            message = self.messages.append(consultation.id, actor.id, text, attachments, now)
        return message

    def end_session(self, actor: User, consultation_id: int, now: Optional[datetime] = None) -> Consultation:
        """
        Finish an IN_PROGRESS consultation.

        ``session_duration`` is the elapsed whole minutes since ``start_at``,
        halves rounded up. Ending twice fails with ``StateConflictError``.
        """
        now = now or utcnow()
        consultation = self._load(consultation_id)
        access = evaluate_access(actor, consultation)
        if not (access.participant or actor.is_admin()):
            raise AuthorizationError("Access denied")

        if consultation.status != ConsultationStatus.IN_PROGRESS:
            raise StateConflictError("Consultation is not active", current_status=consultation.status)

        started = consultation.start_at or now
        duration = int(round_half_up(minutes_between(started, now)))

        consultation = self._compare_and_set(
            consultation_id,
            ConsultationStatus.IN_PROGRESS,
            {
                Consultation.status: ConsultationStatus.FINISHED,
                Consultation.end_at: now,
                Consultation.session_duration: duration,
                Consultation.updated_at: now,
            },
            "Consultation is not active",
        )
        logger.info(f"Consultation {consultation_id} finished by user {actor.id} after {duration} minutes")
        return consultation

    def _compare_and_set(
        self,
        consultation_id: int,
        expected_status: str,
        values: Dict[Any, Any],
        conflict_message: str,
    ) -> Consultation:
        """
        Apply ``values`` only if the stored status still equals ``expected_status``.

        Raises:
            StateConflictError: Carrying the current status when the guard fails
        """
        with storage_guard(self.db, f"update consultation {consultation_id}"):
            updated = self.db.query(Consultation).filter(
                Consultation.id == consultation_id,
                Consultation.status == expected_status,
            ).update(values, synchronize_session=False)

            if updated != 1:
                self.db.rollback()
                current = self.db.query(Consultation.status).filter(
                    Consultation.id == consultation_id
                ).scalar()
                if current is None:
                    raise NotFoundError("Consultation not found", details={"consultation_id": consultation_id})
                logger.info(
                    f"Transition on consultation {consultation_id} refused: "
                    f"expected {expected_status}, found {current}"
                )
                raise StateConflictError(conflict_message, current_status=current)

            self.db.commit()

        self.db.expire_all()
        return self._load(consultation_id)
