import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from plenaria_legal.api.v1.auth import require_roles
from plenaria_legal.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ROLE_ADMIN
from plenaria_legal.core.database import get_db
from plenaria_legal.core.response_utils import create_success_response, paginate, ResponseTimer
from plenaria_legal.core.timeutils import utcnow
from plenaria_legal.models.user import User
from plenaria_legal.schemas import LawyerRejection, PlanUpdate, StandardResponse, TrialGrant, UserResponse
from plenaria_legal.services.admin_service import AdminService
from plenaria_legal.services.consultation_service import ConsultationService
from plenaria_legal.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)

# Every admin route requires the admin role
require_admin = require_roles(ROLE_ADMIN)

router = APIRouter()


def _users_page(users, total, page, limit):
    return paginate([UserResponse.model_validate(user) for user in users], total, page, limit)


@router.get("/lawyers/pending", response_model=StandardResponse)
async def list_pending_lawyers(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Lawyer registrations awaiting approval."""
    with ResponseTimer() as timer:
        users, total = AdminService(db).list_pending_lawyers(page=page, limit=limit)
        return create_success_response(
            data=_users_page(users, total, page, limit),
            execution_time=timer.get_execution_time()
        )


@router.post("/lawyers/{user_id}/approve", response_model=StandardResponse)
async def approve_lawyer(
    user_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        lawyer = AdminService(db).approve_lawyer(current_user, user_id)
        return create_success_response(
            data=UserResponse.model_validate(lawyer),
            execution_time=timer.get_execution_time()
        )


@router.post("/lawyers/{user_id}/reject", response_model=StandardResponse)
async def reject_lawyer(
    user_id: int,
    data: Optional[LawyerRejection] = None,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        lawyer = AdminService(db).reject_lawyer(current_user, user_id, reason=data.reason if data else None)
        return create_success_response(
            data=UserResponse.model_validate(lawyer),
            execution_time=timer.get_execution_time()
        )


@router.get("/users", response_model=StandardResponse)
async def list_users(
    role: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    plan: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        users, total = AdminService(db).list_users(role=role, status=status, plan=plan, page=page, limit=limit)
        return create_success_response(
            data=_users_page(users, total, page, limit),
            execution_time=timer.get_execution_time()
        )


@router.put("/users/{user_id}/suspend", response_model=StandardResponse)
async def suspend_user(
    user_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        user = AdminService(db).suspend_user(current_user, user_id)
        return create_success_response(
            data=UserResponse.model_validate(user),
            execution_time=timer.get_execution_time()
        )


@router.put("/users/{user_id}/activate", response_model=StandardResponse)
async def activate_user(
    user_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        user = AdminService(db).activate_user(current_user, user_id)
        return create_success_response(
            data=UserResponse.model_validate(user),
            execution_time=timer.get_execution_time()
        )


@router.put("/users/{user_id}/plan", response_model=StandardResponse)
async def change_plan(
    user_id: int,
    data: PlanUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Change a customer's plan and optionally its expiry."""
    with ResponseTimer() as timer:
        user = AdminService(db).change_plan(current_user, user_id, data.plan, data.plan_expires_at)
        return create_success_response(
            data=UserResponse.model_validate(user),
            execution_time=timer.get_execution_time()
        )


@router.put("/users/{user_id}/trial", response_model=StandardResponse)
async def grant_trial(
    user_id: int,
    data: TrialGrant,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        user = AdminService(db).grant_trial(current_user, user_id, data.days)
        return create_success_response(
            data=UserResponse.model_validate(user),
            execution_time=timer.get_execution_time()
        )


@router.get("/consultations", response_model=StandardResponse)
async def list_all_consultations(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    with ResponseTimer() as timer:
        service = ConsultationService(db)
        now = utcnow()
        items, total = service.list_for(current_user, status=status, page=page, limit=limit)
        return create_success_response(
            data=paginate([service.to_response(item, current_user, now) for item in items], total, page, limit),
            execution_time=timer.get_execution_time()
        )


@router.get("/metrics", response_model=StandardResponse)
async def get_metrics(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Dashboard snapshot: response times, backlog, SLA breaches, trends."""
    with ResponseTimer() as timer:
        return create_success_response(
            data=MetricsService(db).comprehensive(),
            execution_time=timer.get_execution_time()
        )
