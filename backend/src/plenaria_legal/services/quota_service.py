"""
Quota evaluation for customer consultations.

The check is a plain read and is not serialized with consultation creation:
concurrent creations by the same customer may both pass before either is
committed and overshoot the monthly cap slightly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from plenaria_legal.core.config import ConsultationConfig, get_config
from plenaria_legal.core.constants import UNLIMITED_QUOTA
from plenaria_legal.core.timeutils import resolve_timezone, start_of_month, utcnow
from plenaria_legal.models import Consultation, ConsultationStatus, User
from plenaria_legal.schemas import QuotaResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaStatus:
    has_quota: bool
    used: int
    limit: int

    @property
    def is_unlimited(self) -> bool:
        return self.limit == UNLIMITED_QUOTA

    def to_response(self) -> QuotaResponse:
        return QuotaResponse.from_counts(self.used, self.limit)


NO_QUOTA = QuotaStatus(has_quota=False, used=0, limit=0)


class QuotaEvaluator:
    """Computes whether a customer may open a new consultation this month."""

    def __init__(self, db: Session, settings: Optional[ConsultationConfig] = None):
        self.db = db
        self.settings = settings or get_config().consultation

    def check(self, customer_id: int, now: Optional[datetime] = None) -> QuotaStatus:
        """
        Evaluate the monthly quota for ``customer_id``.

        Fails closed when the id does not resolve to an active customer.
        Unlimited tiers always pass and report ``used=0``.
        """
        now = now or utcnow()
        customer = self.db.get(User, customer_id)
        if customer is None or not customer.is_customer() or not customer.is_active():
            return NO_QUOTA

        limit = self.settings.quota_for_plan(customer.plan)
        if limit == UNLIMITED_QUOTA:
            return QuotaStatus(has_quota=True, used=0, limit=UNLIMITED_QUOTA)

        used = self.db.query(func.count(Consultation.id)).filter(
            Consultation.customer_id == customer_id,
            Consultation.created_at >= start_of_month(now, resolve_timezone(self.settings.quota_timezone)),
            Consultation.status != ConsultationStatus.CANCELLED,
        ).scalar() or 0

        return QuotaStatus(has_quota=used < limit, used=used, limit=limit)
