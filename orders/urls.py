from django.urls import path
from . import views

urlpatterns = [
    path('', views.CreateOrderView.as_view(), name='create_order'),
    path('cancel/', views.CancelDraftView.as_view(), name='cancel_order_draft'),
    path('cancelled/', views.CancelledOrdersView.as_view(), name='cancelled_orders'),
    path('history/', views.OrderHistoryView.as_view(), name='order_history'),
    path('kds/', views.KitchenTicketsView.as_view(), name='kitchen_tickets'),
    path('active/', views.ActiveOrdersView.as_view(), name='active_orders'),
    path('active/takeaway/', views.ActiveTakeawayOrderView.as_view(), name='active_takeaway_order'),
    path('active/table/<int:table_id>/', views.ActiveTableOrderView.as_view(), name='active_table_order'),
    path('<int:order_id>/', views.OrderDetailView.as_view(), name='order_detail'),
    path('<int:order_id>/logs/', views.OrderLogsView.as_view(), name='order_logs'),
    path('<int:order_id>/bill/', views.OrderBillView.as_view(), name='order_bill'),
    path('<int:order_id>/items/status/', views.ItemStatusView.as_view(), name='order_item_status'),
    path('<int:order_id>/items/<int:item_id>/', views.RemoveOrderItemView.as_view(), name='remove_order_item'),
    path('<int:order_id>/status/', views.OrderStatusView.as_view(), name='order_status'),
]
