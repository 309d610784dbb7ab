import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from plenaria_legal.api.v1.auth import get_current_user, require_roles
from plenaria_legal.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ROLE_CUSTOMER, ROLE_LAWYER
from plenaria_legal.core.database import get_db
from plenaria_legal.core.response_utils import create_success_response, paginate, ResponseTimer
from plenaria_legal.core.timeutils import utcnow
from plenaria_legal.models.user import User
from plenaria_legal.schemas import (
    ConsultationCreate, ConsultationCreatedResponse, ConsultationReject, MessageCreate, StandardResponse,
)
from plenaria_legal.services.consultation_service import ConsultationService
from plenaria_legal.services.live_coordinator import LiveSessionCoordinator, get_live_coordinator
from plenaria_legal.services.message_service import to_message_response
from plenaria_legal.services.quota_service import QuotaEvaluator

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=StandardResponse, status_code=201)
async def create_consultation(
    data: ConsultationCreate,
    current_user: User = Depends(require_roles(ROLE_CUSTOMER)),
    db: Session = Depends(get_db)
):
    """Open a consultation; responds with the record and the updated quota."""
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        now = utcnow()
        consultation, quota = service.create(current_user, data, now=now)

        return create_success_response(
            data=ConsultationCreatedResponse(
                consultation=service.to_response(consultation, current_user, now),
                quota=quota.to_response(),
            ),
            status_code=201,
            execution_time=timer.get_execution_time()
        )


@router.get("", response_model=StandardResponse)
async def list_consultations(
    status: Optional[str] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the consultations visible to the current user."""
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        now = utcnow()
        items, total = service.list_for(current_user, status=status, page=page, limit=limit)

        return create_success_response(
            data=paginate(
                [service.to_response(item, current_user, now) for item in items],
                total, page, limit,
            ),
            execution_time=timer.get_execution_time()
        )


@router.get("/quota", response_model=StandardResponse)
async def get_quota(
    current_user: User = Depends(require_roles(ROLE_CUSTOMER)),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        quota = QuotaEvaluator(db).check(current_user.id)
        return create_success_response(
            data=quota.to_response(),
            execution_time=timer.get_execution_time()
        )


@router.get("/{consultation_id}", response_model=StandardResponse)
async def get_consultation(
    consultation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        consultation = service.get_for(current_user, consultation_id)
        return create_success_response(
            data=service.to_response(consultation, current_user),
            execution_time=timer.get_execution_time()
        )


@router.get("/{consultation_id}/messages", response_model=StandardResponse)
async def list_messages(
    consultation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Chat history, oldest first."""
    with ResponseTimer() as timer:
        messages = ConsultationService(db).list_messages(current_user, consultation_id)
        return create_success_response(
            data=[to_message_response(message) for message in messages],
            execution_time=timer.get_execution_time()
        )


@router.post("/{consultation_id}/messages", response_model=StandardResponse, status_code=201)
async def send_message(
    consultation_id: int,
    data: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: LiveSessionCoordinator = Depends(get_live_coordinator)
):
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        message = await coordinator.send_message(
            service, current_user, consultation_id, data.body, data.attachments
        )
        return create_success_response(
            data=to_message_response(message),
            status_code=201,
            execution_time=timer.get_execution_time()
        )


@router.post("/{consultation_id}/accept", response_model=StandardResponse)
async def accept_consultation(
    consultation_id: int,
    current_user: User = Depends(require_roles(ROLE_LAWYER)),
    db: Session = Depends(get_db),
    coordinator: LiveSessionCoordinator = Depends(get_live_coordinator)
):
    """Assign a requested consultation to the current lawyer."""
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        consultation = await coordinator.accept(service, current_user, consultation_id)
        return create_success_response(
            data=service.to_response(consultation, current_user),
            execution_time=timer.get_execution_time()
        )


@router.post("/{consultation_id}/reject", response_model=StandardResponse)
async def reject_consultation(
    consultation_id: int,
    data: Optional[ConsultationReject] = None,
    current_user: User = Depends(require_roles(ROLE_LAWYER)),
    db: Session = Depends(get_db),
    coordinator: LiveSessionCoordinator = Depends(get_live_coordinator)
):
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        consultation = await coordinator.reject(
            service, current_user, consultation_id, reason=data.reason if data else None
        )
        return create_success_response(
            data=service.to_response(consultation, current_user),
            execution_time=timer.get_execution_time()
        )


@router.post("/{consultation_id}/end", response_model=StandardResponse)
async def end_consultation(
    consultation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: LiveSessionCoordinator = Depends(get_live_coordinator)
):
    """End an in-progress session."""
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        consultation = await coordinator.end_session(service, current_user, consultation_id)
        return create_success_response(
            data=service.to_response(consultation, current_user),
            execution_time=timer.get_execution_time()
        )


@router.delete("/{consultation_id}", response_model=StandardResponse)
async def cancel_consultation(
    consultation_id: int,
    current_user: User = Depends(require_roles(ROLE_CUSTOMER)),
    db: Session = Depends(get_db),
    coordinator: LiveSessionCoordinator = Depends(get_live_coordinator)
):
    """Withdraw a consultation no lawyer has taken yet."""
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        consultation = await coordinator.cancel(service, current_user, consultation_id)
        return create_success_response(
            data=service.to_response(consultation, current_user),
            execution_time=timer.get_execution_time()
        )
