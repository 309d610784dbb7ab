"""
Notification service for Plenaria Legal.

Delivery channels (email, push) are not wired up; every notification is
written to the log so operators can follow what would have been sent.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for notifying lawyers, customers and admins."""

    def notify_lawyers_new_request(self, consultation_id: int) -> None:
        logger.warning(f"[LAWYER NOTIFICATION] New consultation request: {consultation_id}")

    def notify_lawyer_direct_assignment(self, consultation_id: int, lawyer_id: int) -> None:
        logger.warning(
            f"[LAWYER NOTIFICATION] New direct consultation {consultation_id} assigned to lawyer: {lawyer_id}"
        )

    def notify_customer_status_change(self, consultation_id: int, customer_id: int, status: str) -> None:
        logger.warning(
            f"[CUSTOMER NOTIFICATION] Consultation {consultation_id} for customer {customer_id} is now {status}"
        )

    def notify_admins_pending_lawyer(self, email: str) -> None:
        logger.warning(f"[ADMIN NOTIFICATION] New lawyer registration pending approval: {email}")

    def notify_lawyer_review(self, email: str, approved: bool, reason: Optional[str] = None) -> None:
        if approved:
            logger.warning(f"[LAWYER NOTIFICATION] Registration approved: {email}")
        else:
            logger.warning(f"[LAWYER NOTIFICATION] Registration rejected: {email}. Reason: {reason or 'None'}")


notification_service = NotificationService()
