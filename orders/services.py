"""
Order aggregate store.

Every mutation runs in one database transaction that covers the order, its item rows,
the dining table it occupies and the activity log. Order totals are recomputed from the
active item rows on each mutation. Change notifications are emitted only after commit.
"""
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from tables import occupancy
from tables.models import DiningTable

from .exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from .models import (
    OPEN_STATUSES,
    Branch,
    CancelledOrderLog,
    MenuItem,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderLog,
    OrderStatus,
    OrderType,
    Staff,
)
from .notifier import ORDER_UPDATED, TABLE_UPDATED, NullNotifier
from .tax import CartLine, compute_bill, to_money

logger = logging.getLogger(__name__)

# Forward-only progression; preparing and processing are alternative names for the same stage
STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PREPARING: 1,
    OrderStatus.PROCESSING: 1,
    OrderStatus.READY: 2,
    OrderStatus.SERVED: 3,
    OrderStatus.COMPLETED: 4,
}

SETTLEMENT_STATUSES = (OrderStatus.COMPLETED, OrderStatus.PROCESSING)

CREATE_ATTEMPTS = 2


def active_cart_lines(order: Order) -> List[CartLine]:
    """Cart lines for the order's non-cancelled item rows"""
    return [
        CartLine(
            unit_price=row.unit_price,
            quantity=row.quantity,
            cgst_rate=row.cgst_rate,
            sgst_rate=row.sgst_rate,
            vat_rate=row.vat_rate,
        )
        for row in order.items.exclude(status=OrderItemStatus.CANCELLED)
    ]


def grouped_active_items(order: Order) -> List[Dict]:
    """Active item rows of an order merged per menu item, in the order they were first added"""
    grouped: Dict[int, Dict] = {}
    rows = order.items.exclude(status=OrderItemStatus.CANCELLED).select_related('menu_item')
    for row in rows:
        entry = grouped.get(row.menu_item_id)
        if entry is None:
            grouped[row.menu_item_id] = {
                'item_id': row.menu_item_id,
                'name': row.menu_item.name,
                'category': row.menu_item.category,
                'quantity': row.quantity,
                'price': row.unit_price,
                'cgst_rate': row.cgst_rate,
                'sgst_rate': row.sgst_rate,
                'vat_rate': row.vat_rate,
            }
        else:
            entry['quantity'] += row.quantity
            entry['price'] = max(entry['price'], row.unit_price)
    return list(grouped.values())


class OrderStore:
    """Create, append, decrement, cancel and settle orders for one branch's staff"""

    def __init__(self, notifier=None):
        self.notifier = notifier or NullNotifier()

    # -- helpers --------------------------------------------------------

    def _notify_after_commit(self, *events: str) -> None:
        for event in dict.fromkeys(events):
            transaction.on_commit(lambda event=event: self.notifier.emit(event), robust=True)

    @contextmanager
    def _atomic(self, operation: str):
        try:
            with transaction.atomic():
                yield
        except IntegrityError as exc:
            logger.warning("%s conflicted with a concurrent change: %s", operation, exc)
            raise ConflictError('Order was changed concurrently, retry the operation') from exc
        except DatabaseError as exc:
            logger.exception("%s failed", operation)
            raise InternalError() from exc

    def _lock_order(self, branch: Branch, order_id: int) -> Order:
        order = Order.objects.select_for_update().filter(id=order_id, branch=branch).first()
        if order is None:
            raise NotFoundError('Order not found')
        return order

    def _lock_table(self, branch: Branch, table_id: int) -> DiningTable:
        table = DiningTable.objects.select_for_update().filter(id=table_id, branch=branch).first()
        if table is None:
            raise NotFoundError('Table not found')
        return table

    def _recalculate(self, order: Order) -> None:
        bill = compute_bill(active_cart_lines(order), discount_rate=order.discount_rate)
        order.subtotal = bill.subtotal
        order.cgst_total = bill.cgst_total
        order.sgst_total = bill.sgst_total
        order.vat_total = bill.vat_total
        order.discount_amount = bill.discount_amount
        # Built from the stored figures so the order reconciles to the cent
        order.grand_total = (
            order.subtotal + order.cgst_total + order.sgst_total + order.vat_total - order.discount_amount
        )
        order.save(update_fields=[
            'subtotal', 'cgst_total', 'sgst_total', 'vat_total', 'discount_amount', 'grand_total'
        ])

    def _cancel_if_empty(self, staff: Staff, order: Order) -> bool:
        """Cancel an order left without active rows; True when a table was released"""
        if order.items.exclude(status=OrderItemStatus.CANCELLED).exists():
            return False
        order.status = OrderStatus.CANCELLED
        order.save(update_fields=['status'])
        logger.info("Order %s cancelled after its last item was cancelled", order.id)
        if order.table_id is None:
            return False
        occupancy.release(self._lock_table(staff.branch, order.table_id))
        return True

    def _resolve_menu_items(self, branch: Branch, items: Iterable[Dict]) -> List[tuple]:
        resolved = []
        for entry in items:
            menu_item_id = entry.get('item_id')
            quantity = entry.get('quantity', 1)
            if not isinstance(quantity, int) or quantity < 1:
                raise ValidationError(f"Invalid quantity for menu item {menu_item_id}")
            menu_item = MenuItem.objects.filter(id=menu_item_id, branch=branch).first()
            if menu_item is None:
                raise ValidationError(f"Invalid menu item ID: {menu_item_id}")
            if not menu_item.is_available:
                raise ValidationError(f"Menu item '{menu_item.name}' is not available")
            resolved.append((menu_item, quantity))
        return resolved

    # -- mutations ------------------------------------------------------

    def create_or_append(self, staff: Staff, order_type: str, items: List[Dict], table_id: Optional[int] = None) -> Order:
        """
        Append items to the target's open order, or open a new order for it

        Args:
            staff: Staff member placing the items; scopes the call to their branch
            order_type: 'dine_in' (needs table_id) or 'takeaway' (no table)
            items: Entries with 'item_id' (menu item) and 'quantity'
            table_id: Dining table for dine-in orders

        Returns:
            The order the items were added to
        """
        if not items:
            raise ValidationError('Order must contain at least one item')
        if order_type not in OrderType.values:
            raise ValidationError(f"Unknown order type '{order_type}'")
        if order_type == OrderType.DINE_IN and table_id is None:
            raise ValidationError('Dine-in orders need a table')
        if order_type == OrderType.TAKEAWAY and table_id is not None:
            raise ValidationError('Takeaway orders cannot target a table')

        resolved = self._resolve_menu_items(staff.branch, items)

        # A concurrent opener can win the one-open-order constraint; the retry then appends to its order
        for attempt in range(1, CREATE_ATTEMPTS + 1):
            try:
                return self._create_or_append(staff, order_type, resolved, table_id)
            except ConflictError:
                if attempt == CREATE_ATTEMPTS:
                    raise
                logger.info("Retrying order placement for table %s", table_id)

    def _create_or_append(self, staff, order_type, resolved, table_id):
        branch = staff.branch
        events = [ORDER_UPDATED]

        with self._atomic('Order placement'):
            table = None
            if table_id is not None:
                table = self._lock_table(branch, table_id)
                order = (
                    Order.objects.select_for_update()
                    .filter(table=table, status__in=OPEN_STATUSES)
                    .first()
                )
            else:
                # The branch row guards the single takeaway slot
                Branch.objects.select_for_update().filter(id=branch.id).first()
                order = (
                    Order.objects.select_for_update()
                    .filter(branch=branch, table__isnull=True, order_type=OrderType.TAKEAWAY,
                            status__in=OPEN_STATUSES)
                    .order_by('-created_at')
                    .first()
                )

            created = order is None
            if created:
                order = Order.objects.create(
                    branch=branch,
                    table=table,
                    order_type=order_type,
                    staff=staff,
                    status=OrderStatus.PENDING,
                )
                if table is not None:
                    occupancy.occupy(table, order)
                    events.append(TABLE_UPDATED)

            for menu_item, quantity in resolved:
                row = OrderItem(
                    order=order,
                    menu_item=menu_item,
                    unit_price=menu_item.price,
                    cgst_rate=menu_item.cgst_rate,
                    sgst_rate=menu_item.sgst_rate,
                    vat_rate=menu_item.vat_rate,
                    status=OrderItemStatus.PENDING,
                )
                row.set_quantity(quantity)
                row.save()
                OrderLog.objects.create(order=order, staff=staff, action_text=f"+ {quantity}x {menu_item.name}")

            self._recalculate(order)

        logger.info(
            "%s order %s with %d item(s) by %s",
            'Opened' if created else 'Appended to', order.id, len(resolved), staff.full_name
        )
        self._notify_after_commit(*events)
        return order

    def remove_one_unit(self, staff: Staff, order_id: int, menu_item_id: int) -> Order:
        """
        Remove one unit of a menu item from an order

        The most recent active row for the item loses one unit. A row with more than one
        unit is split and the removed unit kept as a cancelled row; a single-unit row is
        cancelled in place. An order left without active rows is cancelled and its table
        released.
        """
        events = [ORDER_UPDATED]

        with self._atomic('Item removal'):
            order = self._lock_order(staff.branch, order_id)
            if order.is_terminal:
                raise ConflictError(f"Order is already {order.status}")

            row = (
                order.items.select_for_update()
                .select_related('menu_item')
                .filter(menu_item_id=menu_item_id)
                .exclude(status=OrderItemStatus.CANCELLED)
                .order_by('-id')
                .first()
            )
            if row is None:
                logger.warning("No active item %s in order %s", menu_item_id, order_id)
                raise NotFoundError('Active item not found in order')

            if row.quantity > 1:
                cancelled_unit = row.split_off_unit()
                row.save(update_fields=['quantity', 'cgst_amount', 'sgst_amount', 'vat_amount', 'line_total'])
                cancelled_unit.save()
            else:
                row.status = OrderItemStatus.CANCELLED
                row.save(update_fields=['status'])

            self._recalculate(order)
            if self._cancel_if_empty(staff, order):
                events.append(TABLE_UPDATED)

            OrderLog.objects.create(order=order, staff=staff, action_text=f"- Removed 1x {row.menu_item.name}")

        logger.info("Removed 1x %s from order %s by %s", row.menu_item.name, order.id, staff.full_name)
        self._notify_after_commit(*events)
        return order

    def update_item_statuses(self, staff: Staff, order_id: int, item_ids: List[int], new_status: str,
                             current_status: Optional[str] = None) -> int:
        """
        Move an order's item rows through the kitchen workflow, or cancel them

        Cancelling rows recomputes the order totals, and an order left without
        active rows is cancelled and its table released.

        Args:
            staff: Acting staff member
            order_id: Order owning the rows
            item_ids: Menu item ids whose rows move
            new_status: Target item status
            current_status: Only move rows currently at this status (a kitchen ticket's column)

        Returns:
            Number of rows updated
        """
        if not item_ids or not new_status:
            raise ValidationError('Missing items or status')
        if new_status not in OrderItemStatus.values:
            raise ValidationError(f"Unknown item status '{new_status}'")
        if current_status is not None and current_status not in OrderItemStatus.values:
            raise ValidationError(f"Unknown item status '{current_status}'")

        events = [ORDER_UPDATED]

        with self._atomic('Item status update'):
            order = self._lock_order(staff.branch, order_id)
            if order.is_terminal:
                raise ConflictError(f"Order is already {order.status}")

            rows = order.items.filter(menu_item_id__in=item_ids).exclude(status=OrderItemStatus.CANCELLED)
            if current_status is not None:
                rows = rows.filter(status=current_status)
            updated = rows.update(status=new_status)
            if updated == 0:
                raise NotFoundError('No active items matched')

            if new_status == OrderItemStatus.CANCELLED:
                self._recalculate(order)
                if self._cancel_if_empty(staff, order):
                    events.append(TABLE_UPDATED)

        logger.info("Order %s: %d item row(s) moved to %s", order_id, updated, new_status)
        self._notify_after_commit(*events)
        return updated

    def update_order_status(self, staff: Staff, order_id: int, new_status: str, discount_rate=None) -> Order:
        """
        Move an order to a new status

        Completion stamps closed_at. Cancellation cancels every row not yet served.
        Reaching a terminal status releases the order's table in the same transaction.
        A settlement (completed, or processing for takeaway) may carry a discount rate.
        """
        if not new_status:
            raise ValidationError('Missing status')
        if new_status not in OrderStatus.values:
            raise ValidationError(f"Unknown order status '{new_status}'")
        if discount_rate is not None and new_status not in SETTLEMENT_STATUSES:
            raise ValidationError('A discount can only be applied at settlement')

        events = [ORDER_UPDATED]

        with self._atomic('Order status update'):
            order = self._lock_order(staff.branch, order_id)
            previous = order.status

            if order.is_terminal:
                logger.warning("Refused %s -> %s for order %s", previous, new_status, order.id)
                raise ConflictError(f"Order is already {previous}")
            if new_status != OrderStatus.CANCELLED and STATUS_RANK[new_status] < STATUS_RANK[previous]:
                logger.warning("Refused %s -> %s for order %s", previous, new_status, order.id)
                raise ConflictError(f"Cannot move order from {previous} back to {new_status}")

            if discount_rate is not None:
                order.discount_rate = to_money(discount_rate)
                order.save(update_fields=['discount_rate'])
                self._recalculate(order)

            order.status = new_status
            if new_status == OrderStatus.COMPLETED:
                order.closed_at = timezone.now()
            order.save(update_fields=['status', 'closed_at'])

            if new_status == OrderStatus.CANCELLED:
                order.items.exclude(status=OrderItemStatus.SERVED).update(status=OrderItemStatus.CANCELLED)

            if order.is_terminal and order.table_id is not None:
                occupancy.release(self._lock_table(staff.branch, order.table_id))
                events.append(TABLE_UPDATED)

        logger.info("Order %s moved %s -> %s by %s", order.id, previous, new_status, staff.full_name)
        self._notify_after_commit(*events)
        return order

    def cancel_order_draft(self, staff: Staff, items: List[Dict], table_number=None, reason: Optional[str] = None,
                           total_amount=None) -> CancelledOrderLog:
        """Record a discarded cart; order and item rows are not touched"""
        entry = CancelledOrderLog.objects.create(
            branch=staff.branch,
            table_number=str(table_number) if table_number not in (None, '') else 'Takeaway',
            staff_name=staff.full_name or 'Unknown',
            items=items,
            cancel_reason=reason or 'Cleared by user',
            total_amount=to_money(total_amount or 0),
        )
        logger.info("Logged discarded draft %s for %s by %s", entry.id, entry.table_number, staff.full_name)
        self._notify_after_commit(ORDER_UPDATED)
        return entry
