from decimal import Decimal

from django.db import models
from django.db.models import Q

from .tax import to_money


class OrderStatus(models.TextChoices):
	PENDING = 'pending', 'Pending'
	PREPARING = 'preparing', 'Preparing'
	PROCESSING = 'processing', 'Processing'
	READY = 'ready', 'Ready'
	SERVED = 'served', 'Served'
	COMPLETED = 'completed', 'Completed'
	CANCELLED = 'cancelled', 'Cancelled'


class OrderItemStatus(models.TextChoices):
	PENDING = 'pending', 'Pending'
	PROCESSING = 'processing', 'Processing'
	READY = 'ready', 'Ready'
	SERVED = 'served', 'Served'
	CANCELLED = 'cancelled', 'Cancelled'


class OrderType(models.TextChoices):
	DINE_IN = 'dine_in', 'Dine in'
	TAKEAWAY = 'takeaway', 'Takeaway'


class StaffRole(models.TextChoices):
	ADMIN = 'admin', 'Admin'
	WAITER = 'waiter', 'Waiter'
	KITCHEN = 'kitchen', 'Kitchen'


TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED)
OPEN_STATUSES = tuple(s for s in OrderStatus if s not in TERMINAL_STATUSES)


class Branch(models.Model):
	name = models.CharField(max_length=100)
	created_at = models.DateTimeField(auto_now_add=True)

	def __str__(self):
		return self.name


class Staff(models.Model):
	branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='staff')
	full_name = models.CharField(max_length=100)
	role = models.CharField(max_length=10, choices=StaffRole.choices, default=StaffRole.WAITER)
	api_key = models.CharField(max_length=64, unique=True)
	is_active = models.BooleanField(default=True)

	class Meta:
		verbose_name_plural = 'staff'

	@property
	def is_authenticated(self):
		return True

	def __str__(self):
		return f"{self.full_name} ({self.role})"


class MenuItem(models.Model):
	branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='menu_items')
	name = models.CharField(max_length=100)
	category = models.CharField(max_length=50, blank=True, default='')
	price = models.DecimalField(max_digits=10, decimal_places=2)
	cgst_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0'))
	sgst_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0'))
	vat_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0'))
	is_available = models.BooleanField(default=True)

	def __str__(self):
		return self.name


class Order(models.Model):
	branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='orders')
	table = models.ForeignKey(
		'tables.DiningTable', on_delete=models.PROTECT, null=True, blank=True, related_name='orders'
	)
	order_type = models.CharField(max_length=10, choices=OrderType.choices)
	staff = models.ForeignKey(Staff, on_delete=models.SET_NULL, null=True, blank=True, related_name='orders')
	status = models.CharField(max_length=12, choices=OrderStatus.choices, default=OrderStatus.PENDING)
	subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
	cgst_total = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
	sgst_total = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
	vat_total = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
	discount_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
	discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
	grand_total = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
	created_at = models.DateTimeField(auto_now_add=True)
	closed_at = models.DateTimeField(null=True, blank=True)

	class Meta:
		constraints = [
			models.UniqueConstraint(
				fields=['table'],
				condition=Q(table__isnull=False, status__in=OPEN_STATUSES),
				name='one_open_order_per_table',
			),
			models.UniqueConstraint(
				fields=['branch'],
				condition=Q(table__isnull=True, order_type=OrderType.TAKEAWAY, status__in=OPEN_STATUSES),
				name='one_open_takeaway_per_branch',
			),
		]

	@property
	def is_terminal(self):
		return self.status in TERMINAL_STATUSES

	def __str__(self):
		target = f"Table {self.table.number}" if self.table_id else 'Takeaway'
		return f"Order {self.id} ({target}) - {self.status}"


class OrderItem(models.Model):
	order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
	menu_item = models.ForeignKey(MenuItem, on_delete=models.PROTECT, related_name='order_items')
	quantity = models.PositiveIntegerField()
	# Price and rates are frozen when the row is added
	unit_price = models.DecimalField(max_digits=10, decimal_places=2)
	cgst_rate = models.DecimalField(max_digits=5, decimal_places=2)
	sgst_rate = models.DecimalField(max_digits=5, decimal_places=2)
	vat_rate = models.DecimalField(max_digits=5, decimal_places=2)
	cgst_amount = models.DecimalField(max_digits=10, decimal_places=2)
	sgst_amount = models.DecimalField(max_digits=10, decimal_places=2)
	vat_amount = models.DecimalField(max_digits=10, decimal_places=2)
	line_total = models.DecimalField(max_digits=10, decimal_places=2)
	status = models.CharField(max_length=12, choices=OrderItemStatus.choices, default=OrderItemStatus.PENDING)
	created_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		ordering = ['id']

	def set_quantity(self, quantity):
		"""Set quantity and re-derive the row amounts from the frozen unit price and rates"""
		base = self.unit_price * quantity
		self.quantity = quantity
		self.cgst_amount = to_money(base * self.cgst_rate / 100)
		self.sgst_amount = to_money(base * self.sgst_rate / 100)
		self.vat_amount = to_money(base * self.vat_rate / 100)
		self.line_total = to_money(base) + self.cgst_amount + self.sgst_amount + self.vat_amount

	def split_off_unit(self):
		"""
		Take one unit off this row and return it as a new, unsaved cancelled row.

		The new row carries exactly one unit's share of this row's amounts and this
		row's amounts shrink by the same figures.
		"""
		unit = OrderItem(
			order_id=self.order_id,
			menu_item_id=self.menu_item_id,
			quantity=1,
			unit_price=self.unit_price,
			cgst_rate=self.cgst_rate,
			sgst_rate=self.sgst_rate,
			vat_rate=self.vat_rate,
			cgst_amount=to_money(self.cgst_amount / self.quantity),
			sgst_amount=to_money(self.sgst_amount / self.quantity),
			vat_amount=to_money(self.vat_amount / self.quantity),
			line_total=to_money(self.line_total / self.quantity),
			status=OrderItemStatus.CANCELLED,
		)
		self.quantity -= 1
		self.cgst_amount -= unit.cgst_amount
		self.sgst_amount -= unit.sgst_amount
		self.vat_amount -= unit.vat_amount
		self.line_total -= unit.line_total
		return unit

	def __str__(self):
		return f"{self.quantity} x {self.menu_item.name} for Order {self.order_id}"


class OrderLog(models.Model):
	order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='logs')
	staff = models.ForeignKey(Staff, on_delete=models.SET_NULL, null=True, blank=True, related_name='order_logs')
	action_text = models.CharField(max_length=255)
	created_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		ordering = ['-created_at', '-id']

	def __str__(self):
		return f"Order {self.order_id}: {self.action_text}"


class CancelledOrderLog(models.Model):
	branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='cancelled_orders')
	table_number = models.CharField(max_length=20)
	staff_name = models.CharField(max_length=100, default='Unknown')
	items = models.JSONField(default=list)
	cancel_reason = models.CharField(max_length=255, default='Cleared by user')
	total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
	cancelled_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		ordering = ['-cancelled_at', '-id']

	def __str__(self):
		return f"Cancelled draft for {self.table_number} ({self.total_amount})"
