"""
Authorization policy for consultations.

Every read and command decides standing through ``evaluate_access`` so the
role rules live in one place:

- customers see and act on their own consultations only;
- lawyers see unassigned REQUESTED consultations (to accept or reject them)
  and everything assigned to them;
- admins see everything and may end sessions, but do not chat.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_

from plenaria_legal.models import Consultation, ConsultationStatus, User


@dataclass(frozen=True)
class ConsultationAccess:
    visible: bool = False
    editable: bool = False
    participant: bool = False
    contacts_visible: bool = False


NO_ACCESS = ConsultationAccess()


def evaluate_access(actor: User, consultation: Consultation) -> ConsultationAccess:
    """Resolve what ``actor`` may do with ``consultation``."""
    if actor.is_admin():
        return ConsultationAccess(visible=True, editable=True, participant=False, contacts_visible=True)

    if actor.is_customer():
        if consultation.customer_id == actor.id:
            return ConsultationAccess(visible=True, editable=True, participant=True, contacts_visible=True)
        return NO_ACCESS

    if actor.is_lawyer():
        if consultation.lawyer_id is not None and consultation.lawyer_id == actor.id:
            return ConsultationAccess(visible=True, editable=True, participant=True, contacts_visible=True)
        if consultation.status == ConsultationStatus.REQUESTED and consultation.lawyer_id is None:
            # Open request: may be accepted or rejected, but no contact details yet
            return ConsultationAccess(visible=True, editable=True, participant=False, contacts_visible=False)
        return NO_ACCESS

    return NO_ACCESS


def list_filter(actor: User, status: Optional[str] = None):
    """
    SQLAlchemy criteria selecting the consultations ``actor`` may list.

    Returns a list of filter clauses to apply to a ``Consultation`` query.
    """
    clauses = []
    if actor.is_customer():
        clauses.append(Consultation.customer_id == actor.id)
        if status:
            clauses.append(Consultation.status == status)
    elif actor.is_lawyer():
        if status == ConsultationStatus.REQUESTED:
            clauses.append(Consultation.status == ConsultationStatus.REQUESTED)
        elif status:
            clauses.append(Consultation.lawyer_id == actor.id)
            clauses.append(Consultation.status == status)
        else:
            clauses.append(or_(
                Consultation.status == ConsultationStatus.REQUESTED,
                Consultation.lawyer_id == actor.id,
            ))
    elif actor.is_admin():
        if status:
            clauses.append(Consultation.status == status)
    else:
        # Unknown roles see nothing
        clauses.append(Consultation.id.is_(None))
    return clauses
