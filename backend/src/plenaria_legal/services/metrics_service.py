"""
Dashboard metrics for Plenaria Legal.

Every figure is recomputed from the stored consultations and users on each
call; nothing is cached.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from plenaria_legal.core.constants import PLANS, ROLE_LAWYER, ROLE_CUSTOMER, TREND_WINDOW_DAYS, USER_PENDING, USER_ROLES
from plenaria_legal.core.timeutils import hours_between, round_half_up, utcnow
from plenaria_legal.models import Consultation, ConsultationStatus, User
from plenaria_legal.schemas import ConsultationMetrics, MetricsResponse, TrendPoint, UserMetrics

logger = logging.getLogger(__name__)

# Statuses whose start_at marks the moment a lawyer took the request
RESPONDED_STATUSES = (ConsultationStatus.ACCEPTED, ConsultationStatus.IN_PROGRESS, ConsultationStatus.FINISHED)


class MetricsService:
    """Read-only aggregates over consultation and user history."""

    def __init__(self, db: Session):
        self.db = db

    def average_response_time(self) -> float:
        """Mean hours from creation to session start, one decimal; 0 without data."""
        rows = self.db.query(Consultation.created_at, Consultation.start_at).filter(
            Consultation.status.in_(RESPONDED_STATUSES),
            Consultation.start_at.isnot(None),
            Consultation.created_at.isnot(None),
        ).all()
        if not rows:
            return 0.0

        total = sum(hours_between(created_at, start_at) for created_at, start_at in rows)
        return round_half_up(total / len(rows), 1)

    def pending_count(self) -> int:
        return self.db.query(func.count(Consultation.id)).filter(
            Consultation.status == ConsultationStatus.REQUESTED
        ).scalar() or 0

    def sla_breaches(self, now: Optional[datetime] = None) -> int:
        """REQUESTED consultations whose response deadline has passed."""
        now = now or utcnow()
        return self.db.query(func.count(Consultation.id)).filter(
            Consultation.status == ConsultationStatus.REQUESTED,
            Consultation.response_by < now,
        ).scalar() or 0

    def consultation_stats(self) -> Dict[str, int]:
        stats = {status: 0 for status in ConsultationStatus.ALL}
        rows = self.db.query(Consultation.status, func.count(Consultation.id)).group_by(
            Consultation.status
        ).all()
        for status, count in rows:
            stats[status] = count
        return stats

    def user_stats(self) -> UserMetrics:
        by_role = {role: 0 for role in USER_ROLES}
        for role, count in self.db.query(User.role, func.count(User.id)).group_by(User.role).all():
            by_role[role] = count

        pending_lawyers = self.db.query(func.count(User.id)).filter(
            User.role == ROLE_LAWYER,
            User.status == USER_PENDING,
        ).scalar() or 0

        customers_by_plan = {plan: 0 for plan in PLANS}
        rows = self.db.query(User.plan, func.count(User.id)).filter(
            User.role == ROLE_CUSTOMER
        ).group_by(User.plan).all()
        for plan, count in rows:
            if plan:
                customers_by_plan[plan] = count

        return UserMetrics(
            by_role=by_role,
            pending_lawyers=pending_lawyers,
            customers_by_plan=customers_by_plan,
        )

    def trend(self, now: Optional[datetime] = None) -> List[TrendPoint]:
        """Daily creation counts over the trailing window, oldest day first."""
        now = now or utcnow()
        since = now - timedelta(days=TREND_WINDOW_DAYS)
        created = self.db.query(Consultation.created_at).filter(Consultation.created_at >= since).all()

        per_day = Counter(created_at.strftime('%Y-%m-%d') for (created_at,) in created)
        return [TrendPoint(date=day, count=per_day[day]) for day in sorted(per_day)]

    def average_session_duration(self) -> int:
        """Mean duration of finished sessions in whole minutes; 0 without data."""
        durations = [
            duration for (duration,) in self.db.query(Consultation.session_duration).filter(
                Consultation.status == ConsultationStatus.FINISHED,
                Consultation.session_duration.isnot(None),
            ).all()
        ]
        if not durations:
            return 0
        return int(round_half_up(sum(durations) / len(durations)))

    def comprehensive(self, now: Optional[datetime] = None) -> MetricsResponse:
        """Snapshot for the admin dashboard."""
        now = now or utcnow()
        metrics = MetricsResponse(
            consultations=ConsultationMetrics(
                average_response_time_hours=self.average_response_time(),
                pending_count=self.pending_count(),
                sla_breaches=self.sla_breaches(now),
                by_status=self.consultation_stats(),
                average_session_duration_minutes=self.average_session_duration(),
                trend=self.trend(now),
            ),
            users=self.user_stats(),
        )
        logger.info("Computed dashboard metrics")
        return metrics
