from django.db.models import Q
from django.shortcuts import get_object_or_404
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from restopos.permissions import require_role
from tables.models import DiningTable

from .kitchen import kitchen_tickets
from .models import OPEN_STATUSES, CancelledOrderLog, Order, OrderStatus, OrderType
from .notifier import get_notifier
from .serializers import (
    ActiveOrderSerializer, BillQuerySerializer, BillSerializer, CancelDraftSerializer,
    CancelledOrderLogSerializer, CreateOrderSerializer, ItemStatusUpdateSerializer,
    KitchenTicketSerializer, OrderDetailSerializer, OrderLogSerializer, OrderSerializer,
    OrderStatusUpdateSerializer
)
from .services import OrderStore, active_cart_lines
from .tax import compute_bill

ORDER_ID_PARAMETER = OpenApiParameter(
    name='order_id',
    type=OpenApiTypes.INT,
    location=OpenApiParameter.PATH,
    description='Order ID'
)


def get_store():
    return OrderStore(notifier=get_notifier())


def branch_orders(request):
    return Order.objects.filter(branch=request.user.branch).select_related('table', 'staff')


class CreateOrderView(APIView):
    permission_classes = [require_role('admin', 'waiter')]

    @extend_schema(
        summary="Create or append to an order",
        description="Add items to the open order of a table (dine_in) or of the takeaway slot, "
                    "opening a new order when there is none",
        request=CreateOrderSerializer,
        responses={201: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Dine-in Example',
                summary='Two paneer tikka for table 3',
                value={'table_id': 3, 'order_type': 'dine_in', 'items': [{'item_id': 1, 'quantity': 2}]}
            )
        ]
    )
    def post(self, request):
        serializer = CreateOrderSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        order = get_store().create_or_append(
            staff=request.user,
            order_type=serializer.validated_data['order_type'],
            items=serializer.validated_data['items'],
            table_id=serializer.validated_data['table_id'],
        )
        return Response({
            'message': 'Order processed successfully',
            'order_id': order.id
        }, status=status.HTTP_201_CREATED)


class CancelDraftView(APIView):
    permission_classes = [require_role('admin', 'waiter')]

    @extend_schema(
        summary="Log a discarded cart",
        description="Record a cart that was cleared before or instead of becoming a running order",
        request=CancelDraftSerializer,
        responses={201: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Cancel Example',
                summary='Cart cleared at table 4',
                value={'table_number': '4', 'items': [{'item_id': 1, 'quantity': 1}],
                       'reason': 'Guest left', 'total_amount': '105.00'}
            )
        ]
    )
    def post(self, request):
        serializer = CancelDraftSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        entry = get_store().cancel_order_draft(staff=request.user, **serializer.validated_data)
        return Response({
            'message': 'Cancelled order logged successfully',
            'cancel_id': entry.id
        }, status=status.HTTP_201_CREATED)


class CancelledOrdersView(APIView):
    permission_classes = [require_role('admin')]

    @extend_schema(
        summary="List discarded carts",
        responses={200: CancelledOrderLogSerializer(many=True)}
    )
    def get(self, request):
        entries = CancelledOrderLog.objects.filter(branch=request.user.branch)
        return Response(CancelledOrderLogSerializer(entries, many=True).data)


class OrderHistoryView(APIView):
    permission_classes = [require_role('admin')]

    @extend_schema(
        summary="List settled orders",
        description="Completed orders and takeaway orders settled into processing, most recently closed first",
        responses={200: OrderSerializer(many=True)}
    )
    def get(self, request):
        orders = branch_orders(request).filter(
            Q(status=OrderStatus.COMPLETED) |
            Q(status=OrderStatus.PROCESSING, order_type=OrderType.TAKEAWAY)
        )
        orders = sorted(orders, key=lambda o: o.closed_at or o.created_at, reverse=True)
        return Response(OrderSerializer(orders, many=True).data)


class KitchenTicketsView(APIView):
    @extend_schema(
        summary="Kitchen display tickets",
        description="Unserved items of unsettled orders grouped per order and item status, oldest order first",
        responses={200: KitchenTicketSerializer(many=True)}
    )
    def get(self, request):
        tickets = kitchen_tickets(request.user.branch)
        return Response(KitchenTicketSerializer(tickets, many=True).data)


class ActiveOrdersView(APIView):
    @extend_schema(
        summary="List open orders",
        responses={200: OrderSerializer(many=True)}
    )
    def get(self, request):
        orders = branch_orders(request).filter(status__in=OPEN_STATUSES).order_by('-created_at')
        return Response(OrderSerializer(orders, many=True).data)


class ActiveTakeawayOrderView(APIView):
    @extend_schema(
        summary="Open takeaway order",
        description="The open takeaway order with its items merged per menu item, or null",
        responses={200: ActiveOrderSerializer}
    )
    def get(self, request):
        order = (
            branch_orders(request)
            .filter(table__isnull=True, order_type=OrderType.TAKEAWAY, status__in=OPEN_STATUSES)
            .order_by('-created_at')
            .first()
        )
        if order is None:
            return Response(None)
        return Response(ActiveOrderSerializer(order).data)


class ActiveTableOrderView(APIView):
    @extend_schema(
        summary="Open order for a table",
        description="The table's open order with its items merged per menu item, or null",
        parameters=[
            OpenApiParameter(
                name='table_id',
                type=OpenApiTypes.INT,
                location=OpenApiParameter.PATH,
                description='Dining table ID'
            )
        ],
        responses={200: ActiveOrderSerializer}
    )
    def get(self, request, table_id):
        table = get_object_or_404(DiningTable, id=table_id, branch=request.user.branch)
        order = (
            branch_orders(request)
            .filter(table=table, status__in=OPEN_STATUSES)
            .order_by('-created_at')
            .first()
        )
        if order is None:
            return Response(None)
        return Response(ActiveOrderSerializer(order).data)


class OrderDetailView(APIView):
    @extend_schema(
        summary="Get order details",
        description="Order totals with its active item rows",
        parameters=[ORDER_ID_PARAMETER],
        responses={200: OrderDetailSerializer}
    )
    def get(self, request, order_id):
        order = get_object_or_404(branch_orders(request), id=order_id)
        return Response(OrderDetailSerializer(order).data)


class OrderLogsView(APIView):
    @extend_schema(
        summary="Order activity log",
        description="Item additions and removals, newest first",
        parameters=[ORDER_ID_PARAMETER],
        responses={200: OrderLogSerializer(many=True)}
    )
    def get(self, request, order_id):
        order = get_object_or_404(branch_orders(request), id=order_id)
        logs = order.logs.select_related('staff')
        return Response(OrderLogSerializer(logs, many=True).data)


class OrderBillView(APIView):
    @extend_schema(
        summary="Preview the bill",
        description="Food/liquor split with discount, service charge and taxes for the order's active items",
        parameters=[ORDER_ID_PARAMETER, BillQuerySerializer],
        responses={200: BillSerializer}
    )
    def get(self, request, order_id):
        order = get_object_or_404(branch_orders(request), id=order_id)
        query = BillQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        bill = compute_bill(active_cart_lines(order), **query.validated_data)
        return Response(BillSerializer(bill.as_dict()).data)


class RemoveOrderItemView(APIView):
    permission_classes = [require_role('admin')]

    @extend_schema(
        summary="Remove one unit of an item",
        description="Cancel one unit of a menu item; an order left empty is cancelled and its table released",
        parameters=[
            ORDER_ID_PARAMETER,
            OpenApiParameter(
                name='item_id',
                type=OpenApiTypes.INT,
                location=OpenApiParameter.PATH,
                description='Menu item ID'
            )
        ],
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
    )
    def delete(self, request, order_id, item_id):
        order = get_store().remove_one_unit(staff=request.user, order_id=order_id, menu_item_id=item_id)
        return Response({
            'message': '1x Item quantity removed successfully',
            'order_status': order.status
        }, status=status.HTTP_200_OK)


class ItemStatusView(APIView):
    permission_classes = [require_role('admin', 'kitchen', 'waiter')]

    @extend_schema(
        summary="Move items through the kitchen",
        request=ItemStatusUpdateSerializer,
        parameters=[ORDER_ID_PARAMETER],
        responses={200: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Ticket Move Example',
                summary='Start cooking a pending ticket',
                value={'item_ids': [1, 5], 'new_status': 'processing', 'current_status': 'pending'}
            )
        ]
    )
    def put(self, request, order_id):
        serializer = ItemStatusUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        updated = get_store().update_item_statuses(staff=request.user, order_id=order_id, **serializer.validated_data)
        return Response({
            'message': 'Items status updated successfully',
            'updated': updated
        }, status=status.HTTP_200_OK)


class OrderStatusView(APIView):
    permission_classes = [require_role('admin', 'kitchen', 'waiter')]

    @extend_schema(
        summary="Change order status",
        description="Completing or cancelling an order releases its table. "
                    "A discount rate may be given when settling.",
        request=OrderStatusUpdateSerializer,
        parameters=[ORDER_ID_PARAMETER],
        responses={200: OrderSerializer, 409: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Settle Example',
                summary='Settle with 10% discount',
                value={'status': 'completed', 'discount_rate': '10.00'}
            )
        ]
    )
    def put(self, request, order_id):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        order = get_store().update_order_status(
            staff=request.user,
            order_id=order_id,
            new_status=serializer.validated_data['status'],
            discount_rate=serializer.validated_data['discount_rate'],
        )
        return Response(OrderSerializer(order).data, status=status.HTTP_200_OK)
