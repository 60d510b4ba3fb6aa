from rest_framework import serializers

from .models import DiningTable, TableStatus


class DiningTableSerializer(serializers.ModelSerializer):
    current_order_id = serializers.IntegerField(read_only=True, allow_null=True)
    is_placed = serializers.BooleanField(read_only=True)

    class Meta:
        model = DiningTable
        fields = ['id', 'number', 'capacity', 'section', 'shape', 'grid_row', 'grid_col',
                  'is_placed', 'status', 'current_order_id']
        read_only_fields = ['id', 'status', 'current_order_id', 'is_placed']
        extra_kwargs = {
            'number': {'help_text': 'Table number shown on the floor plan'},
            'grid_row': {'help_text': 'Layout grid row (null when not placed)'},
            'grid_col': {'help_text': 'Layout grid column (null when not placed)'}
        }

    def validate_number(self, value):
        if value <= 0:
            raise serializers.ValidationError("number must be a positive integer")
        branch = self.context['branch']
        duplicates = DiningTable.objects.filter(branch=branch, number=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(id=self.instance.id)
        if duplicates.exists():
            raise serializers.ValidationError("A table with this number already exists")
        return value

    def validate_capacity(self, value):
        if value <= 0:
            raise serializers.ValidationError("capacity must be a positive integer")
        return value


class TableStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=TableStatus.choices,
        help_text="available, reserved or cleaning"
    )
