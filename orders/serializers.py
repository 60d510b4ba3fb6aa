from rest_framework import serializers

from .models import CancelledOrderLog, Order, OrderItem, OrderItemStatus, OrderLog, OrderStatus, OrderType
from .services import grouped_active_items


class OrderItemSerializer(serializers.ModelSerializer):
    item_id = serializers.IntegerField(source='menu_item_id', read_only=True)
    name = serializers.CharField(source='menu_item.name', read_only=True)

    class Meta:
        model = OrderItem
        fields = ['id', 'item_id', 'name', 'quantity', 'unit_price', 'cgst_rate', 'sgst_rate',
                  'vat_rate', 'cgst_amount', 'sgst_amount', 'vat_amount', 'line_total', 'status']
        extra_kwargs = {
            'unit_price': {'help_text': 'Unit price frozen when the item was added'},
            'line_total': {'help_text': 'Line amount including CGST, SGST and VAT'}
        }


class OrderSerializer(serializers.ModelSerializer):
    table_id = serializers.IntegerField(read_only=True, allow_null=True)
    table_number = serializers.IntegerField(source='table.number', read_only=True, allow_null=True, default=None)
    waiter_name = serializers.CharField(source='staff.full_name', read_only=True, allow_null=True, default=None)

    class Meta:
        model = Order
        fields = ['id', 'table_id', 'table_number', 'order_type', 'waiter_name', 'status',
                  'subtotal', 'cgst_total', 'sgst_total', 'vat_total', 'discount_rate',
                  'discount_amount', 'grand_total', 'created_at', 'closed_at']
        read_only_fields = fields
        extra_kwargs = {
            'subtotal': {'help_text': 'Sum of unit price x quantity over active items'},
            'discount_amount': {'help_text': 'Discount granted at settlement'},
            'grand_total': {'help_text': 'subtotal + CGST + SGST + VAT - discount'}
        }


class OrderDetailSerializer(OrderSerializer):
    items = serializers.SerializerMethodField()

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ['items']
        read_only_fields = fields

    def get_items(self, order):
        rows = order.items.exclude(status=OrderItemStatus.CANCELLED).select_related('menu_item')
        return OrderItemSerializer(rows, many=True).data


class GroupedItemSerializer(serializers.Serializer):
    item_id = serializers.IntegerField(help_text='Menu item ID')
    name = serializers.CharField()
    category = serializers.CharField()
    quantity = serializers.IntegerField(help_text='Units across all active rows')
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    cgst_rate = serializers.DecimalField(max_digits=5, decimal_places=2)
    sgst_rate = serializers.DecimalField(max_digits=5, decimal_places=2)
    vat_rate = serializers.DecimalField(max_digits=5, decimal_places=2)


class ActiveOrderSerializer(OrderSerializer):
    items = serializers.SerializerMethodField()

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ['items']
        read_only_fields = fields

    def get_items(self, order):
        return GroupedItemSerializer(grouped_active_items(order), many=True).data


class OrderLineInputSerializer(serializers.Serializer):
    item_id = serializers.IntegerField(help_text="ID of the menu item to add")
    quantity = serializers.IntegerField(min_value=1, default=1, help_text="Quantity to add (minimum 1)")


class CreateOrderSerializer(serializers.Serializer):
    table_id = serializers.IntegerField(required=False, allow_null=True, default=None,
                                        help_text="Dining table ID (omit for takeaway)")
    order_type = serializers.ChoiceField(choices=OrderType.choices)
    items = OrderLineInputSerializer(many=True, allow_empty=False)


class ItemStatusUpdateSerializer(serializers.Serializer):
    item_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False,
                                     help_text="Menu item IDs whose rows move")
    new_status = serializers.CharField(help_text="pending, processing, ready, served or cancelled")
    current_status = serializers.CharField(required=False, allow_null=True, default=None,
                                           help_text="Only move rows currently at this status")


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.CharField(help_text=f"One of: {', '.join(OrderStatus.values)}")
    discount_rate = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, max_value=100,
                                             required=False, allow_null=True, default=None,
                                             help_text="Discount percentage granted at settlement")


class CancelDraftSerializer(serializers.Serializer):
    table_number = serializers.CharField(required=False, allow_null=True, allow_blank=True, default=None)
    items = serializers.ListField(child=serializers.DictField(), default=list)
    reason = serializers.CharField(required=False, allow_null=True, allow_blank=True, default=None)
    total_amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False,
                                            allow_null=True, default=None)


class CancelledOrderLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = CancelledOrderLog
        fields = ['id', 'table_number', 'staff_name', 'items', 'cancel_reason', 'total_amount', 'cancelled_at']


class OrderLogSerializer(serializers.ModelSerializer):
    log_id = serializers.IntegerField(source='id', read_only=True)
    user_name = serializers.CharField(source='staff.full_name', read_only=True, allow_null=True, default=None)
    role = serializers.CharField(source='staff.role', read_only=True, allow_null=True, default=None)

    class Meta:
        model = OrderLog
        fields = ['log_id', 'action_text', 'created_at', 'user_name', 'role']


class TicketItemSerializer(serializers.Serializer):
    item_id = serializers.IntegerField()
    name = serializers.CharField()
    quantity = serializers.IntegerField()


class KitchenTicketSerializer(serializers.Serializer):
    ticket_id = serializers.CharField(help_text="<order_id>_<item status>")
    order_id = serializers.IntegerField()
    status = serializers.CharField()
    table_number = serializers.CharField()
    order_type = serializers.CharField()
    waiter_name = serializers.CharField(allow_null=True)
    created_at = serializers.DateTimeField()
    items = TicketItemSerializer(many=True)


class BillQuerySerializer(serializers.Serializer):
    discount_rate = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, max_value=100, default=0)
    service_charge_rate = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, max_value=100,
                                                   default=0)


class BillSerializer(serializers.Serializer):
    food_subtotal = serializers.DecimalField(max_digits=10, decimal_places=2)
    liquor_subtotal = serializers.DecimalField(max_digits=10, decimal_places=2)
    subtotal = serializers.DecimalField(max_digits=10, decimal_places=2)
    discount_amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    service_charge = serializers.DecimalField(max_digits=10, decimal_places=2)
    cgst_total = serializers.DecimalField(max_digits=10, decimal_places=2)
    sgst_total = serializers.DecimalField(max_digits=10, decimal_places=2)
    vat_total = serializers.DecimalField(max_digits=10, decimal_places=2)
    grand_total = serializers.DecimalField(max_digits=10, decimal_places=2)
