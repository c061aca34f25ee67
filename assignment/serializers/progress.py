from rest_framework import serializers

from assignment.models.progress import TripProgress
from workflow.core.labels import status_label


class TripProgressSerializer(serializers.ModelSerializer):
    status_label = serializers.SerializerMethodField()

    class Meta:
        model = TripProgress
        fields = [
            'id', 'order', 'fulfiller_id', 'current_status', 'status_label',
            'accepted_at', 'loading_at', 'loaded_at', 'in_transit_at', 'delivered_at', 'completed_at',
            'notes', 'updated_at',
        ]
        read_only_fields = fields

    def get_status_label(self, obj):
        return str(status_label(obj.current_status))


class ProgressRequestSerializer(serializers.Serializer):
    status = serializers.CharField()
    notes = serializers.CharField(required=False, allow_blank=True, default='')
