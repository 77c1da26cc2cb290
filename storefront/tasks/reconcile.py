# storefront/tasks/reconcile.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.services.order_service import OrderService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="storefront.tasks.reconcile.reconcile_stock_task")
def reconcile_stock_task():
    """Re-run pending stock steps of orders flagged at checkout."""
    logger.info("Stock reconciliation task started")

    db = SessionLocal()
    try:
        service = OrderService(db)
        flagged = service.repo.list_needing_reconciliation()

        logger.info(f"Found {len(flagged)} orders waiting for stock reconciliation")

        still_flagged = []
        for order in flagged:
            order_id, order_number = order.id, order.order_number
            try:
                reconciled = service.retry_stock_reconciliation(order_id)
            except Exception as e:
                db.rollback()
                logger.warning(f"Reconciliation of order {order_number} failed: {e}")
                still_flagged.append(order_number)
                continue
            if reconciled.needs_reconciliation:
                still_flagged.append(order_number)

        return {"checked": len(flagged), "still_flagged": still_flagged}

    finally:
        db.close()
