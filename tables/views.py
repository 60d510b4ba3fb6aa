import logging

from django.db import transaction
from django.shortcuts import get_object_or_404
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from orders.exceptions import ConflictError
from orders.notifier import TABLE_UPDATED, get_notifier
from restopos.permissions import MethodRolesMixin, require_role

from . import occupancy
from .models import DiningTable, TableStatus
from .serializers import DiningTableSerializer, TableStatusSerializer

logger = logging.getLogger(__name__)

TABLE_ID_PARAMETER = OpenApiParameter(
    name='table_id',
    type=OpenApiTypes.INT,
    location=OpenApiParameter.PATH,
    description='Dining table ID'
)

REMOVABLE_STATUSES = (TableStatus.AVAILABLE, TableStatus.CLEANING)


def notify_table_updated():
    notifier = get_notifier()
    transaction.on_commit(lambda: notifier.emit(TABLE_UPDATED), robust=True)


class TableListView(MethodRolesMixin, APIView):
    method_roles = {'POST': ('admin',)}

    @extend_schema(
        summary="List tables",
        responses={200: DiningTableSerializer(many=True)}
    )
    def get(self, request):
        tables = DiningTable.objects.filter(branch=request.user.branch)
        return Response(DiningTableSerializer(tables, many=True).data)

    @extend_schema(
        summary="Create a table",
        request=DiningTableSerializer,
        responses={201: DiningTableSerializer},
        examples=[
            OpenApiExample(
                'Create Table Example',
                summary='Four-seater placed on the grid',
                value={'number': 7, 'capacity': 4, 'section': 'Main', 'shape': 'square',
                       'grid_row': 1, 'grid_col': 3}
            )
        ]
    )
    def post(self, request):
        serializer = DiningTableSerializer(data=request.data, context={'branch': request.user.branch})
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        with transaction.atomic():
            table = serializer.save(branch=request.user.branch)
            notify_table_updated()
        logger.info("Table %s created by %s", table.number, request.user.full_name)
        return Response(DiningTableSerializer(table).data, status=status.HTTP_201_CREATED)


class TableDetailView(MethodRolesMixin, APIView):
    method_roles = {'PUT': ('admin',), 'DELETE': ('admin',)}

    @extend_schema(
        summary="Update a table",
        description="Change number, capacity, section, shape or grid position",
        request=DiningTableSerializer,
        parameters=[TABLE_ID_PARAMETER],
        responses={200: DiningTableSerializer}
    )
    def put(self, request, table_id):
        table = get_object_or_404(DiningTable, id=table_id, branch=request.user.branch)
        serializer = DiningTableSerializer(table, data=request.data, partial=True,
                                           context={'branch': request.user.branch})
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        with transaction.atomic():
            table = serializer.save()
            notify_table_updated()
        return Response(DiningTableSerializer(table).data)

    @extend_schema(
        summary="Delete a table",
        description="Only available or cleaning tables can be deleted",
        parameters=[TABLE_ID_PARAMETER],
        responses={200: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT}
    )
    def delete(self, request, table_id):
        with transaction.atomic():
            table = get_object_or_404(
                DiningTable.objects.select_for_update(), id=table_id, branch=request.user.branch
            )
            if table.status not in REMOVABLE_STATUSES or table.orders.exists():
                raise ConflictError('Cannot delete an occupied, reserved or previously used table.')
            table.delete()
            notify_table_updated()
        logger.info("Table %s deleted by %s", table_id, request.user.full_name)
        return Response({'message': 'Table deleted successfully'})


class TableStatusView(APIView):
    permission_classes = [require_role('admin', 'waiter')]

    @extend_schema(
        summary="Set table status",
        description="Mark a table reserved, cleaning or available. Occupancy follows orders only.",
        request=TableStatusSerializer,
        parameters=[TABLE_ID_PARAMETER],
        responses={200: DiningTableSerializer, 409: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Status Example',
                summary='Table being cleaned',
                value={'status': 'cleaning'}
            )
        ]
    )
    def put(self, request, table_id):
        serializer = TableStatusSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        with transaction.atomic():
            table = get_object_or_404(
                DiningTable.objects.select_for_update(), id=table_id, branch=request.user.branch
            )
            occupancy.set_status(table, serializer.validated_data['status'])
            notify_table_updated()
        return Response(DiningTableSerializer(table).data)
