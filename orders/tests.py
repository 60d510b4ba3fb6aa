import threading
from decimal import Decimal
from unittest import mock, skipUnless

import redis
from django.db import DatabaseError, IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from tables import occupancy
from tables.models import DiningTable, TableStatus

from .exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from .kitchen import kitchen_tickets
from .models import (
    OPEN_STATUSES, CancelledOrderLog, MenuItem, Order, OrderItem, OrderItemStatus, OrderLog, OrderStatus
)
from .notifier import ORDER_UPDATED, TABLE_UPDATED, RecordingNotifier, RedisNotifier
from .services import OrderStore
from .tax import CartLine, compute_bill
from .testing import make_restaurant


class OrderInvariantsMixin:
    """Assertions every committed state must satisfy"""

    def assertTotalsReconcile(self, order):
        order.refresh_from_db()
        expected = (order.subtotal + order.cgst_total + order.sgst_total + order.vat_total
                    - order.discount_amount)
        self.assertLessEqual(abs(order.grand_total - expected), Decimal('0.01'))

    def assertTableOccupancyConsistent(self):
        for table in DiningTable.objects.all():
            open_order = Order.objects.filter(table=table, status__in=OPEN_STATUSES).first()
            if open_order is None:
                self.assertIsNone(table.current_order_id)
            else:
                self.assertEqual(table.current_order_id, open_order.id)
                self.assertEqual(table.status, TableStatus.OCCUPIED)


class TaxCalculationTests(TestCase):
    """Test food/liquor split, discount, service charge and tax totals"""

    def test_mixed_cart_with_discount_and_service_charge(self):
        """Test the food + liquor bill with 10% discount and 5% service charge"""
        lines = [
            CartLine(unit_price=Decimal('100'), quantity=2, cgst_rate=Decimal('2.5'), sgst_rate=Decimal('2.5')),
            CartLine(unit_price=Decimal('200'), quantity=1, vat_rate=Decimal('10')),
        ]

        bill = compute_bill(lines, discount_rate=Decimal('10'), service_charge_rate=Decimal('5'))

        # food: 200 - 20 discount + 9 SC = 189 taxable; liquor: 200 - 20 + 9 = 189 taxable
        self.assertEqual(bill.food_subtotal, Decimal('200.00'))
        self.assertEqual(bill.liquor_subtotal, Decimal('200.00'))
        self.assertEqual(bill.discount_amount, Decimal('40.00'))
        self.assertEqual(bill.service_charge, Decimal('18.00'))
        # 189 x 2.5% = 4.725
        self.assertEqual(bill.cgst_total, Decimal('4.73'))
        self.assertEqual(bill.sgst_total, Decimal('4.73'))
        self.assertEqual(bill.vat_total, Decimal('18.90'))
        # 189 + 189 + 4.725 + 4.725 + 18.9
        self.assertEqual(bill.grand_total, Decimal('406.35'))

    def test_rates_differ_within_a_bucket(self):
        """Test each line is taxed at its own rate on its share of the bucket"""
        lines = [
            CartLine(unit_price=Decimal('100'), quantity=1, cgst_rate=Decimal('2.5'), sgst_rate=Decimal('2.5')),
            CartLine(unit_price=Decimal('300'), quantity=1, cgst_rate=Decimal('9'), sgst_rate=Decimal('9')),
        ]

        bill = compute_bill(lines, discount_rate=Decimal('50'))

        # taxable food 200; shares 50 and 150
        self.assertEqual(bill.cgst_total, Decimal('14.75'))
        self.assertEqual(bill.sgst_total, Decimal('14.75'))
        self.assertEqual(bill.grand_total, Decimal('229.50'))

    def test_empty_bucket_contributes_zero(self):
        """Test a food-only cart leaves the liquor bucket at zero"""
        lines = [CartLine(unit_price=Decimal('60'), quantity=3, cgst_rate=Decimal('2.5'), sgst_rate=Decimal('2.5'))]

        bill = compute_bill(lines, discount_rate=Decimal('10'), service_charge_rate=Decimal('10'))

        self.assertEqual(bill.liquor_subtotal, Decimal('0.00'))
        self.assertEqual(bill.vat_total, Decimal('0.00'))
        # 180 - 18 + 16.2 = 178.2 taxable; 2 x 4.455 tax
        self.assertEqual(bill.cgst_total, Decimal('4.46'))
        self.assertEqual(bill.grand_total, Decimal('187.11'))

    def test_empty_cart(self):
        """Test an empty cart yields zero totals"""
        bill = compute_bill([], discount_rate=Decimal('10'), service_charge_rate=Decimal('5'))

        self.assertEqual(bill.subtotal, Decimal('0.00'))
        self.assertEqual(bill.grand_total, Decimal('0.00'))


class OrderPlacementTests(OrderInvariantsMixin, TestCase):
    """Test creating and appending to orders"""

    def setUp(self):
        self.r = make_restaurant()
        self.notifier = RecordingNotifier()
        self.store = OrderStore(notifier=self.notifier)

    def place(self, *items, table=None, order_type='dine_in', staff=None):
        return self.store.create_or_append(
            staff=staff or self.r.waiter,
            order_type=order_type,
            items=[{'item_id': menu_item.id, 'quantity': qty} for menu_item, qty in items],
            table_id=table.id if table is not None else None,
        )

    def test_first_items_open_order_and_occupy_table(self):
        """Test the first add opens a pending order and occupies the table"""
        order = self.place((self.r.paneer, 2), table=self.r.table)

        order.refresh_from_db()
        self.r.table.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.staff, self.r.waiter)
        self.assertEqual(self.r.table.status, TableStatus.OCCUPIED)
        self.assertEqual(self.r.table.current_order_id, order.id)

        row = order.items.get()
        self.assertEqual(row.quantity, 2)
        self.assertEqual(row.cgst_amount, Decimal('5.00'))
        self.assertEqual(row.sgst_amount, Decimal('5.00'))
        self.assertEqual(row.line_total, Decimal('210.00'))

        self.assertEqual(order.subtotal, Decimal('200.00'))
        self.assertEqual(order.grand_total, Decimal('210.00'))
        self.assertEqual(list(order.logs.values_list('action_text', flat=True)), ['+ 2x Paneer Tikka'])
        self.assertTotalsReconcile(order)
        self.assertTableOccupancyConsistent()

    def test_append_adds_new_rows_to_open_order(self):
        """Test later adds reuse the open order and never merge rows"""
        first = self.place((self.r.paneer, 2), table=self.r.table)
        second = self.place((self.r.paneer, 1), (self.r.beer, 1), table=self.r.table)

        self.assertEqual(first.id, second.id)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrderItem.objects.filter(order=first, menu_item=self.r.paneer).count(), 2)

        first.refresh_from_db()
        self.assertEqual(first.subtotal, Decimal('500.00'))
        self.assertEqual(first.cgst_total, Decimal('7.50'))
        self.assertEqual(first.sgst_total, Decimal('7.50'))
        self.assertEqual(first.vat_total, Decimal('20.00'))
        self.assertEqual(first.grand_total, Decimal('535.00'))
        self.assertEqual(first.logs.count(), 3)
        self.assertTotalsReconcile(first)

    def test_takeaway_slot_is_shared(self):
        """Test takeaway adds land on the branch's single open takeaway order"""
        first = self.place((self.r.naan, 1), order_type='takeaway')
        second = self.place((self.r.paneer, 1), order_type='takeaway')

        self.assertEqual(first.id, second.id)
        self.assertIsNone(first.table_id)
        self.assertTableOccupancyConsistent()

    def test_closed_order_is_not_reused(self):
        """Test a settled table gets a fresh order"""
        first = self.place((self.r.naan, 1), table=self.r.table)
        self.store.update_order_status(self.r.waiter, first.id, OrderStatus.COMPLETED)

        second = self.place((self.r.naan, 1), table=self.r.table)

        self.assertNotEqual(first.id, second.id)
        self.assertTableOccupancyConsistent()

    def test_price_is_frozen_on_the_row(self):
        """Test menu price changes do not touch rows already added"""
        order = self.place((self.r.paneer, 1), table=self.r.table)
        self.r.paneer.price = Decimal('150.00')
        self.r.paneer.save()
        self.place((self.r.paneer, 1), table=self.r.table)

        prices = list(order.items.values_list('unit_price', flat=True))
        self.assertEqual(prices, [Decimal('100.00'), Decimal('150.00')])
        order.refresh_from_db()
        self.assertEqual(order.subtotal, Decimal('250.00'))

    def test_empty_items_rejected(self):
        with self.assertRaises(ValidationError):
            self.store.create_or_append(self.r.waiter, 'dine_in', [], table_id=self.r.table.id)
        self.assertFalse(Order.objects.exists())

    def test_unknown_or_unavailable_menu_item_rejected(self):
        """Test a bad line rejects the whole call without partial writes"""
        self.r.beer.is_available = False
        self.r.beer.save()

        with self.assertRaises(ValidationError):
            self.place((self.r.paneer, 1), (self.r.beer, 1), table=self.r.table)
        with self.assertRaises(ValidationError):
            self.store.create_or_append(self.r.waiter, 'dine_in', [{'item_id': 9999, 'quantity': 1}],
                                        table_id=self.r.table.id)

        self.assertFalse(Order.objects.exists())
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)

    def test_menu_item_of_another_branch_rejected(self):
        other = make_restaurant(name='Other Branch', key_prefix='other-')
        with self.assertRaises(ValidationError):
            self.place((other.paneer, 1), table=self.r.table)

    def test_table_of_another_branch_not_found(self):
        other = make_restaurant(name='Other Branch', key_prefix='other-')
        with self.assertRaises(NotFoundError):
            self.place((self.r.paneer, 1), table=other.table)
        self.assertFalse(Order.objects.exists())

    def test_order_type_and_table_must_agree(self):
        with self.assertRaises(ValidationError):
            self.place((self.r.paneer, 1), order_type='dine_in')
        with self.assertRaises(ValidationError):
            self.place((self.r.paneer, 1), table=self.r.table, order_type='takeaway')
        with self.assertRaises(ValidationError):
            self.place((self.r.paneer, 1), table=self.r.table, order_type='delivery')

    def test_failure_mid_transaction_rolls_everything_back(self):
        """Test a database failure leaves no order, row, log or table change behind"""
        with mock.patch.object(OrderLog.objects, 'create', side_effect=DatabaseError('disk full')):
            with self.assertRaises(InternalError):
                self.place((self.r.paneer, 1), table=self.r.table)

        self.assertFalse(Order.objects.exists())
        self.assertFalse(OrderItem.objects.exists())
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)
        self.assertIsNone(self.r.table.current_order_id)

    def test_order_opened_concurrently_is_appended_to(self):
        """Test an open order committed by another caller is found and appended to"""
        # Another request opened the order but this table row has not been read since
        existing = Order.objects.create(branch=self.r.branch, table=self.r.table, order_type='dine_in',
                                        staff=self.r.admin)
        occupancy.occupy(self.r.table, existing)

        order = self.place((self.r.naan, 1), table=self.r.table)

        self.assertEqual(order.id, existing.id)
        self.assertEqual(Order.objects.filter(table=self.r.table).count(), 1)
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.current_order_id, existing.id)
        self.assertTableOccupancyConsistent()

    def test_lost_race_to_open_order_retries_onto_winner(self):
        """Test a placement that loses the one-open-order race appends to the winning order"""
        place_once = self.store._create_or_append
        attempts = []

        def lose_first_attempt(*args):
            attempts.append(args)
            if len(attempts) > 1:
                return place_once(*args)
            with mock.patch.object(Order.objects, 'create', side_effect=IntegrityError('one_open_order_per_table')):
                with self.assertRaises(ConflictError):
                    place_once(*args)
            # The competing request commits its order after ours rolled back
            OrderStore().create_or_append(self.r.admin, 'dine_in', [{'item_id': self.r.beer.id, 'quantity': 1}],
                                          table_id=self.r.table.id)
            raise ConflictError('Order was changed concurrently, retry the operation')

        with mock.patch.object(self.store, '_create_or_append', side_effect=lose_first_attempt):
            order = self.place((self.r.paneer, 1), table=self.r.table)

        self.assertEqual(len(attempts), 2)
        open_orders = Order.objects.filter(table=self.r.table, status__in=OPEN_STATUSES)
        self.assertEqual(list(open_orders.values_list('id', flat=True)), [order.id])
        self.assertEqual(sorted(order.items.values_list('menu_item_id', flat=True)),
                         sorted([self.r.paneer.id, self.r.beer.id]))
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.current_order_id, order.id)
        self.assertTotalsReconcile(order)
        self.assertTableOccupancyConsistent()

    def test_placement_gives_up_after_repeated_conflicts(self):
        with mock.patch.object(Order.objects, 'create', side_effect=IntegrityError('one_open_order_per_table')):
            with self.assertRaises(ConflictError):
                self.place((self.r.paneer, 1), table=self.r.table)

        self.assertFalse(Order.objects.exists())
        self.r.table.refresh_from_db()
        self.assertIsNone(self.r.table.current_order_id)

    def test_store_rejects_second_open_order_per_table(self):
        Order.objects.create(branch=self.r.branch, table=self.r.table, order_type='dine_in')
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Order.objects.create(branch=self.r.branch, table=self.r.table, order_type='dine_in')

    def test_store_rejects_second_open_takeaway_order(self):
        Order.objects.create(branch=self.r.branch, order_type='takeaway')
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Order.objects.create(branch=self.r.branch, order_type='takeaway')

    def test_notifications_follow_commit(self):
        """Test order and table events are emitted once the transaction commits"""
        with self.captureOnCommitCallbacks(execute=True):
            self.place((self.r.paneer, 1), table=self.r.table)
            self.assertEqual(self.notifier.events, [])

        self.assertEqual(self.notifier.events, [ORDER_UPDATED, TABLE_UPDATED])

    def test_failed_placement_emits_nothing(self):
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(NotFoundError):
                self.store.create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.paneer.id}],
                                            table_id=9999)
        self.assertEqual(self.notifier.events, [])


class RemoveOneUnitTests(OrderInvariantsMixin, TestCase):
    """Test single-unit removal, row splitting and automatic cancellation"""

    def setUp(self):
        self.r = make_restaurant()
        self.store = OrderStore(notifier=RecordingNotifier())
        self.order = self.store.create_or_append(
            self.r.waiter, 'dine_in', [{'item_id': self.r.paneer.id, 'quantity': 3}], table_id=self.r.table.id
        )

    def remove(self, menu_item):
        return self.store.remove_one_unit(self.r.admin, self.order.id, menu_item.id)

    def test_removing_from_multi_unit_row_splits_it(self):
        """Test a 3-unit row becomes 2 active units plus a cancelled single unit"""
        original = self.order.items.get()
        self.assertEqual(original.line_total, Decimal('315.00'))

        self.remove(self.r.paneer)

        original.refresh_from_db()
        self.assertEqual(original.quantity, 2)
        self.assertEqual(original.status, OrderItemStatus.PENDING)
        self.assertEqual(original.line_total, Decimal('210.00'))
        self.assertEqual(original.cgst_amount, Decimal('5.00'))

        split = self.order.items.exclude(id=original.id).get()
        self.assertEqual(split.quantity, 1)
        self.assertEqual(split.status, OrderItemStatus.CANCELLED)
        self.assertEqual(split.line_total, Decimal('105.00'))
        self.assertEqual(split.unit_price, Decimal('100.00'))

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING)
        self.assertEqual(self.order.subtotal, Decimal('200.00'))
        self.assertEqual(self.order.grand_total, Decimal('210.00'))
        self.assertTotalsReconcile(self.order)

    def test_removing_every_unit_cancels_order_and_releases_table(self):
        """Test three removals from a 3-unit row leave nothing active"""
        for _ in range(3):
            self.remove(self.r.paneer)

        self.assertFalse(self.order.items.exclude(status=OrderItemStatus.CANCELLED).exists())
        # The original row plus two split units; nothing is deleted
        self.assertEqual(self.order.items.count(), 3)

        self.order.refresh_from_db()
        self.r.table.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.CANCELLED)
        self.assertEqual(self.order.grand_total, Decimal('0.00'))
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)
        self.assertIsNone(self.r.table.current_order_id)
        self.assertTableOccupancyConsistent()

    def test_most_recent_row_is_decremented(self):
        self.store.create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.paneer.id, 'quantity': 1}],
                                    table_id=self.r.table.id)
        first, latest = self.order.items.order_by('id')

        self.remove(self.r.paneer)

        first.refresh_from_db()
        latest.refresh_from_db()
        self.assertEqual(first.quantity, 3)
        self.assertEqual(first.status, OrderItemStatus.PENDING)
        self.assertEqual(latest.status, OrderItemStatus.CANCELLED)

    def test_fully_cancelled_item_is_not_found(self):
        """Test removing an item with no active units reports not found"""
        self.store.create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.beer.id, 'quantity': 1}],
                                    table_id=self.r.table.id)
        self.remove(self.r.beer)

        with self.assertRaisesMessage(NotFoundError, 'Active item not found in order'):
            self.remove(self.r.beer)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING)

    def test_removal_writes_log_entry(self):
        self.remove(self.r.paneer)

        latest = OrderLog.objects.filter(order=self.order).first()
        self.assertEqual(latest.action_text, '- Removed 1x Paneer Tikka')
        self.assertEqual(latest.staff, self.r.admin)

    def test_removal_from_settled_order_conflicts(self):
        self.store.update_order_status(self.r.admin, self.order.id, OrderStatus.COMPLETED)
        with self.assertRaises(ConflictError):
            self.remove(self.r.paneer)

    def test_unknown_order_not_found(self):
        with self.assertRaises(NotFoundError):
            self.store.remove_one_unit(self.r.admin, 9999, self.r.paneer.id)

    def test_order_of_another_branch_not_found(self):
        other = make_restaurant(name='Other Branch', key_prefix='other-')
        with self.assertRaises(NotFoundError):
            self.store.remove_one_unit(other.admin, self.order.id, self.r.paneer.id)


class OrderStatusTests(OrderInvariantsMixin, TestCase):
    """Test order transitions, settlement and cancellation"""

    def setUp(self):
        self.r = make_restaurant()
        self.notifier = RecordingNotifier()
        self.store = OrderStore(notifier=self.notifier)
        self.order = self.store.create_or_append(
            self.r.waiter, 'dine_in',
            [{'item_id': self.r.paneer.id, 'quantity': 2}, {'item_id': self.r.beer.id, 'quantity': 1}],
            table_id=self.r.table.id
        )

    def test_settled_totals_reconcile_to_the_cent(self):
        """Test the stored grand total equals the sum of the separately rounded figures"""
        thali = MenuItem.objects.create(branch=self.r.branch, name='Mini Thali', price=Decimal('10.00'),
                                        cgst_rate=Decimal('2.5'), sgst_rate=Decimal('2.5'))
        lassi = MenuItem.objects.create(branch=self.r.branch, name='Sweet Lassi', price=Decimal('12.50'),
                                        cgst_rate=Decimal('6'), sgst_rate=Decimal('6'))
        whisky = MenuItem.objects.create(branch=self.r.branch, name='Single Malt', price=Decimal('118.00'),
                                         vat_rate=Decimal('10'))
        order = self.store.create_or_append(
            self.r.waiter, 'dine_in', [{'item_id': item.id, 'quantity': 1} for item in (thali, lassi, whisky)],
            table_id=self.r.other_table.id
        )

        self.store.update_order_status(self.r.waiter, order.id, OrderStatus.COMPLETED,
                                       discount_rate=Decimal('12.5'))

        order.refresh_from_db()
        self.assertEqual(order.subtotal, Decimal('140.50'))
        self.assertEqual(order.discount_amount, Decimal('17.56'))
        self.assertEqual(order.cgst_total, Decimal('0.88'))
        self.assertEqual(order.sgst_total, Decimal('0.88'))
        self.assertEqual(order.vat_total, Decimal('10.33'))
        self.assertEqual(order.grand_total, Decimal('135.03'))
        self.assertEqual(order.grand_total, order.subtotal + order.cgst_total + order.sgst_total
                         + order.vat_total - order.discount_amount)

    def test_completion_stamps_closed_at_and_releases_table(self):
        order = self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.COMPLETED)

        order.refresh_from_db()
        self.r.table.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.COMPLETED)
        self.assertIsNotNone(order.closed_at)
        self.assertGreaterEqual(order.closed_at, order.created_at)
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)
        self.assertIsNone(self.r.table.current_order_id)
        self.assertTableOccupancyConsistent()

    def test_second_completion_conflicts_and_keeps_closed_at(self):
        """Test settling twice fails and does not re-stamp closed_at"""
        self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.COMPLETED)
        self.order.refresh_from_db()
        closed_at = self.order.closed_at

        with self.assertRaises(ConflictError):
            self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.COMPLETED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.closed_at, closed_at)

    def test_settlement_discount_recomputes_totals(self):
        """Test a 10% settlement discount is taken before tax"""
        self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.COMPLETED,
                                       discount_rate=Decimal('10'))

        self.order.refresh_from_db()
        self.assertEqual(self.order.subtotal, Decimal('400.00'))
        self.assertEqual(self.order.discount_amount, Decimal('40.00'))
        self.assertEqual(self.order.cgst_total, Decimal('4.50'))
        self.assertEqual(self.order.vat_total, Decimal('18.00'))
        self.assertEqual(self.order.grand_total, Decimal('387.00'))
        self.assertTotalsReconcile(self.order)

    def test_discount_outside_settlement_rejected(self):
        with self.assertRaises(ValidationError):
            self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.READY,
                                           discount_rate=Decimal('10'))

    def test_cancellation_cascades_to_unserved_items(self):
        self.store.update_item_statuses(self.r.kitchen, self.order.id, [self.r.beer.id], OrderItemStatus.SERVED)

        self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.CANCELLED)

        statuses = dict(self.order.items.values_list('menu_item_id', 'status'))
        self.assertEqual(statuses[self.r.paneer.id], OrderItemStatus.CANCELLED)
        self.assertEqual(statuses[self.r.beer.id], OrderItemStatus.SERVED)
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)
        self.assertTableOccupancyConsistent()

    def test_forward_transitions_may_skip_steps(self):
        self.store.update_order_status(self.r.kitchen, self.order.id, OrderStatus.READY)
        self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.SERVED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.SERVED)
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.OCCUPIED)

    def test_backward_transition_conflicts(self):
        self.store.update_order_status(self.r.kitchen, self.order.id, OrderStatus.READY)
        with self.assertRaises(ConflictError):
            self.store.update_order_status(self.r.kitchen, self.order.id, OrderStatus.PREPARING)

    def test_unknown_status_rejected(self):
        with self.assertRaises(ValidationError):
            self.store.update_order_status(self.r.waiter, self.order.id, 'paid')
        with self.assertRaises(ValidationError):
            self.store.update_order_status(self.r.waiter, self.order.id, '')

    def test_takeaway_settles_into_processing(self):
        takeaway = self.store.create_or_append(self.r.waiter, 'takeaway', [{'item_id': self.r.naan.id}])

        self.store.update_order_status(self.r.waiter, takeaway.id, OrderStatus.PROCESSING,
                                       discount_rate=Decimal('0'))

        takeaway.refresh_from_db()
        self.assertEqual(takeaway.status, OrderStatus.PROCESSING)
        self.assertIsNone(takeaway.closed_at)

    def test_completion_notifies_order_and_table(self):
        self.notifier.events.clear()
        with self.captureOnCommitCallbacks(execute=True):
            self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.COMPLETED)
        self.assertEqual(self.notifier.events, [ORDER_UPDATED, TABLE_UPDATED])


class ItemStatusTests(TestCase):
    """Test kitchen workflow moves of item rows"""

    def setUp(self):
        self.r = make_restaurant()
        self.store = OrderStore()
        self.order = self.store.create_or_append(
            self.r.waiter, 'dine_in',
            [{'item_id': self.r.paneer.id, 'quantity': 2}, {'item_id': self.r.naan.id, 'quantity': 4}],
            table_id=self.r.table.id
        )

    def test_move_rows_without_touching_totals(self):
        self.order.refresh_from_db()
        grand_total = self.order.grand_total

        updated = self.store.update_item_statuses(self.r.kitchen, self.order.id, [self.r.paneer.id],
                                                  OrderItemStatus.PROCESSING)

        self.assertEqual(updated, 1)
        self.assertEqual(self.order.items.get(menu_item=self.r.paneer).status, OrderItemStatus.PROCESSING)
        self.assertEqual(self.order.items.get(menu_item=self.r.naan).status, OrderItemStatus.PENDING)
        self.order.refresh_from_db()
        self.assertEqual(self.order.grand_total, grand_total)

    def test_current_status_limits_the_move(self):
        """Test only rows in the ticket's column move"""
        self.store.update_item_statuses(self.r.kitchen, self.order.id, [self.r.paneer.id], OrderItemStatus.SERVED)
        self.store.create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.paneer.id, 'quantity': 1}],
                                    table_id=self.r.table.id)

        self.store.update_item_statuses(self.r.kitchen, self.order.id, [self.r.paneer.id],
                                        OrderItemStatus.PROCESSING, current_status=OrderItemStatus.PENDING)

        statuses = list(self.order.items.filter(menu_item=self.r.paneer).order_by('id')
                        .values_list('status', flat=True))
        self.assertEqual(statuses, [OrderItemStatus.SERVED, OrderItemStatus.PROCESSING])

    def test_cancelled_rows_stay_cancelled(self):
        self.store.remove_one_unit(self.r.admin, self.order.id, self.r.paneer.id)

        self.store.update_item_statuses(self.r.kitchen, self.order.id, [self.r.paneer.id], OrderItemStatus.READY)

        statuses = sorted(self.order.items.filter(menu_item=self.r.paneer).values_list('status', flat=True))
        self.assertEqual(statuses, [OrderItemStatus.CANCELLED, OrderItemStatus.READY])

    def test_cancelling_rows_recomputes_totals(self):
        """Test cancelled rows drop out of the order totals in the same call"""
        updated = self.store.update_item_statuses(self.r.waiter, self.order.id, [self.r.naan.id],
                                                  OrderItemStatus.CANCELLED)

        self.assertEqual(updated, 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING)
        self.assertEqual(self.order.subtotal, Decimal('200.00'))
        self.assertEqual(self.order.cgst_total, Decimal('5.00'))
        self.assertEqual(self.order.grand_total, Decimal('210.00'))
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.current_order_id, self.order.id)

    def test_cancelling_every_row_cancels_order_and_releases_table(self):
        notifier = RecordingNotifier()
        store = OrderStore(notifier=notifier)

        with self.captureOnCommitCallbacks(execute=True):
            updated = store.update_item_statuses(self.r.waiter, self.order.id,
                                                 [self.r.paneer.id, self.r.naan.id], OrderItemStatus.CANCELLED)

        self.assertEqual(updated, 2)
        self.order.refresh_from_db()
        self.r.table.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.CANCELLED)
        self.assertEqual(self.order.grand_total, Decimal('0.00'))
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)
        self.assertIsNone(self.r.table.current_order_id)
        self.assertEqual(notifier.events, [ORDER_UPDATED, TABLE_UPDATED])

    def test_missing_input_rejected(self):
        with self.assertRaises(ValidationError):
            self.store.update_item_statuses(self.r.kitchen, self.order.id, [], OrderItemStatus.READY)
        with self.assertRaises(ValidationError):
            self.store.update_item_statuses(self.r.kitchen, self.order.id, [self.r.paneer.id], 'burnt')

    def test_no_matching_rows_not_found(self):
        with self.assertRaises(NotFoundError):
            self.store.update_item_statuses(self.r.kitchen, self.order.id, [self.r.beer.id], OrderItemStatus.READY)

    def test_terminal_order_conflicts(self):
        self.store.update_order_status(self.r.waiter, self.order.id, OrderStatus.COMPLETED)
        with self.assertRaises(ConflictError):
            self.store.update_item_statuses(self.r.kitchen, self.order.id, [self.r.paneer.id],
                                            OrderItemStatus.SERVED)


class KitchenTicketTests(TestCase):
    """Test kitchen ticket grouping and ordering"""

    def setUp(self):
        self.r = make_restaurant()
        self.store = OrderStore()
        self.dine_in = self.store.create_or_append(
            self.r.waiter, 'dine_in',
            [{'item_id': self.r.paneer.id, 'quantity': 2}, {'item_id': self.r.beer.id, 'quantity': 1}],
            table_id=self.r.table.id
        )
        self.store.create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.paneer.id, 'quantity': 1}],
                                    table_id=self.r.table.id)
        self.takeaway = self.store.create_or_append(self.r.waiter, 'takeaway',
                                                    [{'item_id': self.r.naan.id, 'quantity': 2}])

    def test_rows_merge_per_menu_item_within_ticket(self):
        tickets = kitchen_tickets(self.r.branch)

        self.assertEqual([t.ticket_id for t in tickets],
                         [f"{self.dine_in.id}_pending", f"{self.takeaway.id}_pending"])
        first = tickets[0]
        self.assertEqual(first.table_number, '1')
        self.assertEqual(first.waiter_name, 'Ravi Waiter')
        self.assertEqual([(i.name, i.quantity) for i in first.items],
                         [('Paneer Tikka', 3), ('Kingfisher Pint', 1)])
        self.assertEqual(tickets[1].table_number, 'Takeaway')
        # Underlying rows are untouched
        self.assertEqual(self.dine_in.items.filter(menu_item=self.r.paneer).count(), 2)

    def test_one_ticket_per_status(self):
        self.store.update_item_statuses(self.r.kitchen, self.dine_in.id, [self.r.beer.id], OrderItemStatus.PROCESSING)
        self.store.remove_one_unit(self.r.admin, self.dine_in.id, self.r.paneer.id)

        tickets = [t for t in kitchen_tickets(self.r.branch) if t.order_id == self.dine_in.id]

        by_status = {t.status: [(i.name, i.quantity) for i in t.items] for t in tickets}
        self.assertEqual(by_status['pending'], [('Paneer Tikka', 2)])
        self.assertEqual(by_status['processing'], [('Kingfisher Pint', 1)])
        self.assertEqual(by_status['cancelled'], [('Paneer Tikka', 1)])

    def test_served_rows_and_completed_orders_hidden(self):
        self.store.update_item_statuses(self.r.kitchen, self.takeaway.id, [self.r.naan.id], OrderItemStatus.SERVED)
        self.store.update_order_status(self.r.waiter, self.dine_in.id, OrderStatus.COMPLETED)

        self.assertEqual(kitchen_tickets(self.r.branch), [])

    def test_projection_is_repeatable(self):
        self.assertEqual(kitchen_tickets(self.r.branch), kitchen_tickets(self.r.branch))

    def test_other_branch_tickets_hidden(self):
        other = make_restaurant(name='Other Branch', key_prefix='other-')
        self.assertEqual(kitchen_tickets(other.branch), [])


class CancelDraftTests(TestCase):

    def setUp(self):
        self.r = make_restaurant()
        self.store = OrderStore()

    def test_draft_is_logged_without_touching_orders(self):
        entry = self.store.cancel_order_draft(
            self.r.waiter,
            items=[{'item_id': self.r.paneer.id, 'name': 'Paneer Tikka', 'quantity': 2}],
            table_number=4,
            reason='Guest left',
            total_amount=Decimal('210'),
        )

        entry.refresh_from_db()
        self.assertEqual(entry.table_number, '4')
        self.assertEqual(entry.staff_name, 'Ravi Waiter')
        self.assertEqual(entry.cancel_reason, 'Guest left')
        self.assertEqual(entry.total_amount, Decimal('210.00'))
        self.assertEqual(entry.items[0]['quantity'], 2)
        self.assertFalse(Order.objects.exists())

    def test_defaults_for_takeaway_draft(self):
        entry = self.store.cancel_order_draft(self.r.waiter, items=[])

        self.assertEqual(entry.table_number, 'Takeaway')
        self.assertEqual(entry.cancel_reason, 'Cleared by user')
        self.assertEqual(entry.total_amount, Decimal('0.00'))


class RedisNotifierTests(TestCase):
    """Test the Redis broadcast transport"""

    def test_emit_publishes_event_name(self):
        client = mock.MagicMock(spec=redis.Redis)
        notifier = RedisNotifier(client=client, channel='test:events')

        self.assertTrue(notifier.emit(ORDER_UPDATED))
        client.publish.assert_called_once_with('test:events', ORDER_UPDATED)

    def test_lost_connection_drops_event(self):
        client = mock.MagicMock(spec=redis.Redis)
        client.publish.side_effect = redis.ConnectionError('refused')
        notifier = RedisNotifier(client=client, channel='test:events')

        with self.assertLogs('orders.notifier', level='WARNING'):
            self.assertFalse(notifier.emit(TABLE_UPDATED))


@skipUnless(connection.vendor == 'postgresql', 'row locks are only enforced on PostgreSQL')
class ConcurrentPlacementTests(TransactionTestCase):
    """Test simultaneous adds to an empty table land on one order"""

    def test_two_openers_share_one_order(self):
        r = make_restaurant()
        barrier = threading.Barrier(2)
        errors = []

        def place(menu_item):
            try:
                barrier.wait()
                OrderStore().create_or_append(r.waiter, 'dine_in', [{'item_id': menu_item.id, 'quantity': 1}],
                                              table_id=r.table.id)
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=place, args=(item,)) for item in (r.paneer, r.beer)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        order = Order.objects.get(table=r.table)
        self.assertEqual(order.items.count(), 2)
        r.table.refresh_from_db()
        self.assertEqual(r.table.current_order_id, order.id)


@override_settings(NOTIFIER_CLASS='orders.notifier.NullNotifier')
class OrderAPITests(APITestCase):
    """Test order API endpoints"""

    def setUp(self):
        self.r = make_restaurant()
        self.client.defaults['HTTP_X_API_KEY'] = 'waiter-key'

    def create_order(self, items, table=None):
        url = reverse('create_order')
        data = {
            'table_id': table.id if table else None,
            'order_type': 'dine_in' if table else 'takeaway',
            'items': [{'item_id': menu_item.id, 'quantity': qty} for menu_item, qty in items]
        }
        return self.client.post(url, data, format='json')

    def test_create_order(self):
        response = self.create_order([(self.r.paneer, 2)], table=self.r.table)

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        order = Order.objects.get(id=response.data['order_id'])
        self.assertEqual(order.grand_total, Decimal('210.00'))

    def test_create_order_validation(self):
        response = self.client.post(reverse('create_order'),
                                    {'table_id': self.r.table.id, 'order_type': 'dine_in', 'items': []},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.create_order([(self.r.paneer, 1)], table=DiningTable(id=9999))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_authentication_required(self):
        del self.client.defaults['HTTP_X_API_KEY']
        response = self.client.get(reverse('kitchen_tickets'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        response = self.client.get(reverse('kitchen_tickets'), HTTP_X_API_KEY='wrong')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_kitchen_staff_cannot_place_orders(self):
        self.client.defaults['HTTP_X_API_KEY'] = 'kitchen-key'
        response = self.create_order([(self.r.paneer, 1)], table=self.r.table)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_active_order_for_table(self):
        url = reverse('active_table_order', kwargs={'table_id': self.r.table.id})
        self.assertIsNone(self.client.get(url).data)

        self.create_order([(self.r.paneer, 2)], table=self.r.table)
        self.create_order([(self.r.paneer, 1)], table=self.r.table)
        response = self.client.get(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['table_number'], 1)
        self.assertEqual(len(response.data['items']), 1)
        self.assertEqual(response.data['items'][0]['quantity'], 3)
        self.assertEqual(response.data['grand_total'], '315.00')

    def test_active_takeaway_order(self):
        url = reverse('active_takeaway_order')
        self.assertIsNone(self.client.get(url).data)

        self.create_order([(self.r.naan, 2)])
        response = self.client.get(url)

        self.assertEqual(response.data['order_type'], 'takeaway')
        self.assertIsNone(response.data['table_number'])
        self.assertEqual(response.data['items'][0]['name'], 'Butter Naan')

    def test_remove_item_requires_admin(self):
        order_id = self.create_order([(self.r.paneer, 1)], table=self.r.table).data['order_id']
        url = reverse('remove_order_item', kwargs={'order_id': order_id, 'item_id': self.r.paneer.id})

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.delete(url, HTTP_X_API_KEY='admin-key')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order_status'], 'cancelled')

        response = self.client.delete(url, HTTP_X_API_KEY='admin-key')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_remove_missing_item_not_found(self):
        order_id = self.create_order([(self.r.paneer, 1)], table=self.r.table).data['order_id']
        url = reverse('remove_order_item', kwargs={'order_id': order_id, 'item_id': self.r.beer.id})

        response = self.client.delete(url, HTTP_X_API_KEY='admin-key')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_settle_order(self):
        order_id = self.create_order([(self.r.paneer, 2), (self.r.beer, 1)], table=self.r.table).data['order_id']
        url = reverse('order_status', kwargs={'order_id': order_id})

        response = self.client.put(url, {'status': 'completed', 'discount_rate': '10'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['grand_total'], '387.00')
        self.assertIsNotNone(response.data['closed_at'])
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)

        response = self.client.put(url, {'status': 'completed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_item_status_update(self):
        order_id = self.create_order([(self.r.paneer, 2)], table=self.r.table).data['order_id']
        url = reverse('order_item_status', kwargs={'order_id': order_id})

        response = self.client.put(url, {'item_ids': [self.r.paneer.id], 'new_status': 'ready'},
                                   format='json', HTTP_X_API_KEY='kitchen-key')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['updated'], 1)

        response = self.client.put(url, {'item_ids': [], 'new_status': 'ready'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_kitchen_tickets(self):
        self.create_order([(self.r.paneer, 2)], table=self.r.table)

        response = self.client.get(reverse('kitchen_tickets'), HTTP_X_API_KEY='kitchen-key')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['status'], 'pending')
        self.assertEqual(response.data[0]['items'][0]['quantity'], 2)

    def test_order_logs_newest_first(self):
        order_id = self.create_order([(self.r.paneer, 2)], table=self.r.table).data['order_id']
        self.create_order([(self.r.naan, 1)], table=self.r.table)

        response = self.client.get(reverse('order_logs', kwargs={'order_id': order_id}))

        self.assertEqual([entry['action_text'] for entry in response.data], ['+ 1x Butter Naan', '+ 2x Paneer Tikka'])
        self.assertEqual(response.data[0]['user_name'], 'Ravi Waiter')

    def test_order_detail_scoped_to_branch(self):
        order_id = self.create_order([(self.r.paneer, 1)], table=self.r.table).data['order_id']
        make_restaurant(name='Other Branch', key_prefix='other-')

        response = self.client.get(reverse('order_detail', kwargs={'order_id': order_id}))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['items']), 1)

        response = self.client.get(reverse('order_detail', kwargs={'order_id': order_id}),
                                   HTTP_X_API_KEY='other-waiter-key')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_bill_preview(self):
        order_id = self.create_order([(self.r.paneer, 2), (self.r.beer, 1)], table=self.r.table).data['order_id']

        response = self.client.get(reverse('order_bill', kwargs={'order_id': order_id}),
                                   {'discount_rate': '10', 'service_charge_rate': '5'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['service_charge'], '18.00')
        self.assertEqual(response.data['grand_total'], '406.35')
        # Preview only; the stored order is untouched
        self.assertEqual(Order.objects.get(id=order_id).discount_amount, Decimal('0.00'))

    def test_cancel_draft_and_list(self):
        response = self.client.post(reverse('cancel_order_draft'), {
            'table_number': '2',
            'items': [{'item_id': self.r.paneer.id, 'quantity': 1}],
            'total_amount': '105.00'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(CancelledOrderLog.objects.count(), 1)

        response = self.client.get(reverse('cancelled_orders'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.get(reverse('cancelled_orders'), HTTP_X_API_KEY='admin-key')
        self.assertEqual(response.data[0]['total_amount'], '105.00')
        self.assertEqual(response.data[0]['cancel_reason'], 'Cleared by user')

    def test_history_and_active_lists(self):
        dine_in = self.create_order([(self.r.paneer, 1)], table=self.r.table).data['order_id']
        takeaway = self.create_order([(self.r.naan, 1)]).data['order_id']

        response = self.client.get(reverse('active_orders'))
        self.assertEqual({o['id'] for o in response.data}, {dine_in, takeaway})

        self.client.put(reverse('order_status', kwargs={'order_id': dine_in}), {'status': 'completed'}, format='json')
        self.client.put(reverse('order_status', kwargs={'order_id': takeaway}), {'status': 'processing'},
                        format='json')

        response = self.client.get(reverse('order_history'), HTTP_X_API_KEY='admin-key')
        self.assertEqual({o['id'] for o in response.data}, {dine_in, takeaway})
