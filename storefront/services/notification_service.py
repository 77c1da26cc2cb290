# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Order notifications, handed off to Celery so checkout never waits on them.
    """

    @staticmethod
    def send_order_notification(order_id: int, order_number: str, user_id: int | None = None):
        send_order_notification_task.delay(order_id, order_number, user_id)


@celery_app.task(name="storefront.services.notification_service.send_order_notification_task")
def send_order_notification_task(order_id: int, order_number: str, user_id: int | None = None):
    """
    Celery task - a real deployment would send an email/SMS here.
    For now it only logs.
    """
    recipient = f"user {user_id}" if user_id is not None else "guest"
    logger.info(f"[NOTIFICATION] {recipient}: order {order_number} (#{order_id}) received")

    return {"order_id": order_id, "order_number": order_number, "status": "sent"}
