from rest_framework import serializers

from assignment.models.assignment import Assignment
from assignment.services.status_resolver import resolve_status
from workflow.core.labels import source_label, status_label
from workflow.core.statuses import Role


class AssignmentSerializer(serializers.ModelSerializer):
    status_label = serializers.SerializerMethodField()
    effective_status = serializers.SerializerMethodField()
    agreed_price = serializers.SerializerMethodField()

    class Meta:
        model = Assignment
        fields = [
            'id', 'order', 'fulfiller_id', 'status', 'status_label', 'effective_status', 'agreed_price',
            'pickup_window_start', 'pickup_window_end', 'delivery_window_start', 'delivery_window_end',
            'release_reason', 'released_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_status_label(self, obj):
        return str(status_label(obj.status))

    def get_effective_status(self, obj):
        if not obj.is_active:
            return {'status': obj.status, 'label': str(status_label(obj.status)), 'source': 'assignment'}
        resolved = resolve_status(obj.order_id, obj.fulfiller_id)
        return {
            'status': resolved.status,
            'label': str(status_label(resolved.status)) if resolved.is_known else str(source_label(resolved.source)),
            'source': resolved.source,
        }

    def get_agreed_price(self, obj):
        # One fulfiller never sees what another agreed to
        actor = self.context.get('actor')
        if obj.agreed_price is None or actor is None:
            return None
        if actor.role == Role.REQUESTER and actor.actor_id == obj.order.requester_id:
            return str(obj.agreed_price)
        if actor.role == Role.FULFILLER and actor.actor_id == obj.fulfiller_id:
            return str(obj.agreed_price)
        if actor.role == Role.ADMIN:
            return str(obj.agreed_price)
        return None


class ReleaseRequestSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=['cancelled', 'rejected'])
    note = serializers.CharField(required=False, allow_blank=True, default='')
