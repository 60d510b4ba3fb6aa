from django.db import models


class TableStatus(models.TextChoices):
	AVAILABLE = 'available', 'Available'
	OCCUPIED = 'occupied', 'Occupied'
	RESERVED = 'reserved', 'Reserved'
	CLEANING = 'cleaning', 'Cleaning'


class DiningTable(models.Model):
	SHAPE_CHOICES = [
		('square', 'Square'),
		('round', 'Round'),
		('rectangle', 'Rectangle'),
	]
	branch = models.ForeignKey('orders.Branch', on_delete=models.CASCADE, related_name='tables')
	number = models.PositiveIntegerField()
	capacity = models.PositiveIntegerField(default=4)
	section = models.CharField(max_length=50, default='Main')
	shape = models.CharField(max_length=10, choices=SHAPE_CHOICES, default='square')
	grid_row = models.PositiveIntegerField(null=True, blank=True)
	grid_col = models.PositiveIntegerField(null=True, blank=True)
	status = models.CharField(max_length=10, choices=TableStatus.choices, default=TableStatus.AVAILABLE)
	current_order = models.ForeignKey(
		'orders.Order', on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
	)

	class Meta:
		ordering = ['number']
		constraints = [
			models.UniqueConstraint(fields=['branch', 'number'], name='unique_table_number_per_branch'),
		]

	@property
	def is_placed(self):
		# Only tables placed on the layout grid count toward floor totals
		return self.grid_row is not None and self.grid_col is not None

	def __str__(self):
		return f"Table {self.number} ({self.status})"
