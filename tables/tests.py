from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from orders.exceptions import ConflictError, ValidationError
from orders.models import Order, OrderStatus
from orders.services import OrderStore
from orders.testing import make_restaurant

from . import occupancy
from .models import DiningTable, TableStatus


class OccupancyTests(TestCase):
    """Test table status changes driven by orders and by staff"""

    def setUp(self):
        self.r = make_restaurant()

    def test_occupy_and_release(self):
        order = Order.objects.create(branch=self.r.branch, table=self.r.table, order_type='dine_in')

        occupancy.occupy(self.r.table, order)
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.OCCUPIED)
        self.assertEqual(self.r.table.current_order_id, order.id)

        occupancy.release(self.r.table)
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)
        self.assertIsNone(self.r.table.current_order_id)

    def test_manual_statuses(self):
        occupancy.set_status(self.r.table, TableStatus.CLEANING)
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.CLEANING)

        occupancy.set_status(self.r.table, TableStatus.AVAILABLE)
        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.AVAILABLE)

    def test_occupied_cannot_be_set_by_hand(self):
        with self.assertRaises(ValidationError):
            occupancy.set_status(self.r.table, TableStatus.OCCUPIED)
        with self.assertRaises(ValidationError):
            occupancy.set_status(self.r.table, 'broken')

    def test_table_with_open_order_keeps_its_status(self):
        OrderStore().create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.naan.id}],
                                      table_id=self.r.table.id)
        self.r.table.refresh_from_db()

        with self.assertRaises(ConflictError):
            occupancy.set_status(self.r.table, TableStatus.AVAILABLE)

        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.OCCUPIED)

    def test_settled_table_can_be_cleaned(self):
        store = OrderStore()
        order = store.create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.naan.id}],
                                       table_id=self.r.table.id)
        store.update_order_status(self.r.waiter, order.id, OrderStatus.COMPLETED)
        self.r.table.refresh_from_db()

        occupancy.set_status(self.r.table, TableStatus.CLEANING)

        self.r.table.refresh_from_db()
        self.assertEqual(self.r.table.status, TableStatus.CLEANING)
        self.assertIsNone(self.r.table.current_order_id)


@override_settings(NOTIFIER_CLASS='orders.notifier.NullNotifier')
class TableAPITests(APITestCase):
    """Test table API endpoints"""

    def setUp(self):
        self.r = make_restaurant()
        self.client.defaults['HTTP_X_API_KEY'] = 'admin-key'

    def test_list_tables(self):
        make_restaurant(name='Other Branch', key_prefix='other-')

        response = self.client.get(reverse('tables'), HTTP_X_API_KEY='kitchen-key')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([t['number'] for t in response.data], [1, 2])
        self.assertTrue(response.data[0]['is_placed'])

    def test_create_table(self):
        data = {'number': 7, 'capacity': 6, 'section': 'Patio', 'shape': 'round'}

        response = self.client.post(reverse('tables'), data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'available')
        self.assertFalse(response.data['is_placed'])
        self.assertTrue(DiningTable.objects.filter(branch=self.r.branch, number=7).exists())

    def test_create_table_requires_admin(self):
        response = self.client.post(reverse('tables'), {'number': 7}, format='json', HTTP_X_API_KEY='waiter-key')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_create_table_validation(self):
        response = self.client.post(reverse('tables'), {'number': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('number', response.data)

        response = self.client.post(reverse('tables'), {'number': 9, 'capacity': 0}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_move_table_on_grid(self):
        url = reverse('table_detail', kwargs={'table_id': self.r.other_table.id})

        response = self.client.put(url, {'grid_row': 2, 'grid_col': 3}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.r.other_table.refresh_from_db()
        self.assertEqual((self.r.other_table.grid_row, self.r.other_table.grid_col), (2, 3))
        self.assertEqual(self.r.other_table.number, 2)

    def test_delete_unused_table(self):
        url = reverse('table_detail', kwargs={'table_id': self.r.other_table.id})

        response = self.client.delete(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(DiningTable.objects.filter(id=self.r.other_table.id).exists())

    def test_delete_occupied_table_conflicts(self):
        OrderStore().create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.naan.id}],
                                      table_id=self.r.table.id)

        response = self.client.delete(reverse('table_detail', kwargs={'table_id': self.r.table.id}))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertTrue(DiningTable.objects.filter(id=self.r.table.id).exists())

    def test_set_status(self):
        url = reverse('table_status', kwargs={'table_id': self.r.table.id})

        response = self.client.put(url, {'status': 'cleaning'}, format='json', HTTP_X_API_KEY='waiter-key')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'cleaning')

        response = self.client.put(url, {'status': 'cleaning'}, format='json', HTTP_X_API_KEY='kitchen-key')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_set_status_with_open_order_conflicts(self):
        OrderStore().create_or_append(self.r.waiter, 'dine_in', [{'item_id': self.r.naan.id}],
                                      table_id=self.r.table.id)
        url = reverse('table_status', kwargs={'table_id': self.r.table.id})

        response = self.client.put(url, {'status': 'available'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_foreign_table_not_found(self):
        other = make_restaurant(name='Other Branch', key_prefix='other-')
        url = reverse('table_status', kwargs={'table_id': other.table.id})

        response = self.client.put(url, {'status': 'cleaning'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
