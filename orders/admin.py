from django.contrib import admin
from .models import Branch, CancelledOrderLog, MenuItem, Order, OrderItem, OrderLog, Staff


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'created_at']


@admin.register(Staff)
class StaffAdmin(admin.ModelAdmin):
    list_display = ['id', 'full_name', 'role', 'branch', 'is_active']
    list_filter = ['role', 'is_active']
    search_fields = ['full_name']
    exclude = ['api_key']


@admin.register(MenuItem)
class MenuItemAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'category', 'price', 'cgst_rate', 'sgst_rate', 'vat_rate', 'is_available']
    search_fields = ['name']
    list_filter = ['category', 'is_available', 'vat_rate']


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = ['menu_item', 'quantity', 'unit_price', 'cgst_amount', 'sgst_amount',
                       'vat_amount', 'line_total', 'status']


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['id', 'table', 'order_type', 'status', 'created_at', 'grand_total']
    list_filter = ['status', 'order_type', 'created_at']
    search_fields = ['table__number']
    readonly_fields = ['created_at', 'closed_at', 'subtotal', 'cgst_total', 'sgst_total',
                       'vat_total', 'discount_amount', 'grand_total']
    inlines = [OrderItemInline]


@admin.register(OrderLog)
class OrderLogAdmin(admin.ModelAdmin):
    list_display = ['order', 'staff', 'action_text', 'created_at']
    search_fields = ['order__id', 'action_text']
    readonly_fields = ['order', 'staff', 'action_text', 'created_at']


@admin.register(CancelledOrderLog)
class CancelledOrderLogAdmin(admin.ModelAdmin):
    list_display = ['id', 'table_number', 'staff_name', 'cancel_reason', 'total_amount', 'cancelled_at']
    list_filter = ['cancelled_at']
    readonly_fields = ['cancelled_at']
