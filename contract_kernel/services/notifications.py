"""
Default NotificationDispatcher.

Delivery (e-mail, in-app) lives outside the kernel.  Until a real
dispatcher is injected, every post-commit notification is written to the
structured log so nothing is silently dropped.
"""

from __future__ import annotations

from contract_kernel.domain.collaborators import LifecycleNotification
from contract_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class LoggingNotificationDispatcher:
    """Logs each notification as ``lifecycle_notification``."""

    def notify(self, notification: LifecycleNotification) -> None:
        logger.info(
            "lifecycle_notification",
            extra={
                "contract_id": str(notification.contract_id),
                "action": notification.action,
                "actor_id": str(notification.actor_id),
                "from_status": (
                    notification.from_status.value
                    if notification.from_status is not None
                    else None
                ),
                "to_status": notification.to_status.value,
                "detail": notification.detail,
            },
        )
