from django.contrib import admin
from .models import DiningTable


@admin.register(DiningTable)
class DiningTableAdmin(admin.ModelAdmin):
    list_display = ['id', 'number', 'branch', 'section', 'capacity', 'status', 'current_order']
    list_filter = ['status', 'section']
    search_fields = ['number']
    readonly_fields = ['current_order']
