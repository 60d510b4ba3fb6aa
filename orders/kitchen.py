"""
Kitchen display tickets.

A ticket groups one order's item rows that share a workflow status. Rows for the same
menu item inside a ticket are shown as one line with the summed quantity. Tickets are
derived on every request and nothing here is stored.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .models import Branch, OrderItem, OrderItemStatus, OrderStatus


@dataclass
class TicketItem:
    item_id: int
    name: str
    quantity: int


@dataclass
class KitchenTicket:
    ticket_id: str
    order_id: int
    status: str
    table_number: str
    order_type: str
    waiter_name: Optional[str]
    created_at: datetime
    items: List[TicketItem] = field(default_factory=list)


def kitchen_tickets(branch: Branch) -> List[KitchenTicket]:
    """Tickets for every unserved item row of the branch's unsettled orders, oldest order first"""
    rows = (
        OrderItem.objects.filter(order__branch=branch)
        .exclude(status=OrderItemStatus.SERVED)
        .exclude(order__status=OrderStatus.COMPLETED)
        .select_related('order', 'order__table', 'order__staff', 'menu_item')
        .order_by('order__created_at', 'order_id', 'id')
    )

    tickets: List[KitchenTicket] = []
    by_key: Dict[str, KitchenTicket] = {}
    lines: Dict[str, Dict[int, TicketItem]] = {}

    for row in rows:
        key = f"{row.order_id}_{row.status}"
        ticket = by_key.get(key)
        if ticket is None:
            order = row.order
            ticket = KitchenTicket(
                ticket_id=key,
                order_id=order.id,
                status=row.status,
                table_number=str(order.table.number) if order.table_id else 'Takeaway',
                order_type=order.order_type,
                waiter_name=order.staff.full_name if order.staff_id else None,
                created_at=order.created_at,
            )
            by_key[key] = ticket
            lines[key] = {}
            tickets.append(ticket)

        line = lines[key].get(row.menu_item_id)
        if line is None:
            line = TicketItem(item_id=row.menu_item_id, name=row.menu_item.name, quantity=0)
            lines[key][row.menu_item_id] = line
            ticket.items.append(line)
        line.quantity += row.quantity

    return tickets
