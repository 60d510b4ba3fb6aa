"""
Keep dining table status in step with the order lifecycle.

Every function expects the table row to be locked by the caller's transaction.
"""
import logging

from orders.exceptions import ConflictError, ValidationError
from orders.models import OPEN_STATUSES

from .models import DiningTable, TableStatus

logger = logging.getLogger(__name__)

MANUAL_STATUSES = (TableStatus.AVAILABLE, TableStatus.RESERVED, TableStatus.CLEANING)


def occupy(table: DiningTable, order) -> None:
    table.status = TableStatus.OCCUPIED
    table.current_order = order
    table.save(update_fields=['status', 'current_order'])
    logger.info("Table %s occupied by order %s", table.number, order.id)


def release(table: DiningTable) -> None:
    table.status = TableStatus.AVAILABLE
    table.current_order = None
    table.save(update_fields=['status', 'current_order'])
    logger.info("Table %s released", table.number)


def set_status(table: DiningTable, new_status: str) -> None:
    """
    Manually set a table's status (reserved, cleaning, or back to available)

    Occupancy is driven by orders only, so the table must not be targeted by an open order.
    """
    if new_status not in TableStatus.values:
        raise ValidationError(f"Unknown table status '{new_status}'")
    if new_status not in MANUAL_STATUSES:
        raise ValidationError('Tables become occupied only through orders')

    if table.orders.filter(status__in=OPEN_STATUSES).exists():
        logger.warning("Refused status %s for table %s with an active order", new_status, table.number)
        raise ConflictError('Table has an active order')

    if new_status == TableStatus.AVAILABLE:
        release(table)
        return

    table.status = new_status
    table.current_order = None
    table.save(update_fields=['status', 'current_order'])
    logger.info("Table %s set to %s", table.number, new_status)
