from rest_framework import serializers

from orders.models import MinimumFreightRate, Order, Proposal
from workflow.core.compliance import compliance_notes
from workflow.core.labels import status_label
from workflow.core.pricing import PricingInputError, format_price_for_user, per_slot_price
from workflow.core.statuses import Role


def price_for_actor(order, role, actor_id):
    """Price view of ``order`` for one actor, with their own leg or the leg breakdown."""
    assignment = None
    assignments = None
    if role == Role.FULFILLER and actor_id:
        assignment = order.assignments.active().filter(fulfiller_id=actor_id).first()
    elif role == Role.REQUESTER:
        assignments = list(order.assignments.active())
    return format_price_for_user(
        order,
        assignment=assignment,
        viewer_role=role,
        viewer_id=actor_id,
        minimum_price=MinimumFreightRate.minimum_price_for(order),
        assignments=assignments,
    )


def _context_actor(serializer):
    actor = serializer.context.get('actor')
    if actor is None:
        return None, None
    return actor.role, actor.actor_id


class OrderSerializer(serializers.ModelSerializer):
    status_label = serializers.SerializerMethodField()
    available_slots = serializers.IntegerField(read_only=True)
    price = serializers.SerializerMethodField()
    compliance = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'status', 'status_label', 'requester_id', 'cargo_type', 'origin', 'destination',
            'required_slots', 'accepted_slots', 'available_slots',
            'pricing_mode', 'fixed_amount', 'unit_rate', 'distance_km', 'weight_kg',
            'price', 'fiscal_documents', 'compliance', 'delivery_reported_at',
            'created_at', 'updated_at',
        ]
        read_only_fields = [
            'status', 'requester_id', 'accepted_slots', 'fiscal_documents',
            'delivery_reported_at', 'created_at', 'updated_at',
        ]
        # Pricing inputs are exposed only through the price guard
        extra_kwargs = {
            'fixed_amount': {'write_only': True},
            'unit_rate': {'write_only': True},
        }

    def validate_required_slots(self, value):
        if value < 1:
            raise serializers.ValidationError("An order needs at least one truck.")
        return value

    def validate(self, attrs):
        try:
            per_slot_price(
                attrs.get('pricing_mode', Order._meta.get_field('pricing_mode').default),
                fixed_amount=attrs.get('fixed_amount'),
                unit_rate=attrs.get('unit_rate'),
                distance_km=attrs.get('distance_km'),
                weight_kg=attrs.get('weight_kg'),
            )
        except PricingInputError as e:
            raise serializers.ValidationError({'pricing_mode': str(e)})
        return attrs

    def get_status_label(self, obj):
        return str(status_label(obj.status))

    def get_price(self, obj):
        role, actor_id = _context_actor(self)
        return price_for_actor(obj, role, actor_id).as_dict()

    def get_compliance(self, obj):
        return compliance_notes(obj.cargo_type, obj.fiscal_documents)


class ProposalSerializer(serializers.ModelSerializer):
    status_label = serializers.SerializerMethodField()
    current_price = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Proposal
        fields = [
            'id', 'order', 'fulfiller_id', 'proposed_price', 'counter_price', 'current_price',
            'message', 'status', 'status_label', 'assignment', 'created_at', 'updated_at',
        ]
        read_only_fields = [
            'fulfiller_id', 'counter_price', 'status', 'assignment', 'created_at', 'updated_at',
        ]

    def get_status_label(self, obj):
        return str(status_label(obj.status))


class TransitionRequestSerializer(serializers.Serializer):
    status = serializers.CharField()


class DispatchRequestSerializer(serializers.Serializer):
    action = serializers.CharField()
    payload = serializers.DictField(required=False, default=dict)


class PriceRequestSerializer(serializers.Serializer):
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    message = serializers.CharField(required=False, allow_blank=True, default='')


class AcceptRequestSerializer(serializers.Serializer):
    pickup_window_start = serializers.DateTimeField(required=False, allow_null=True, default=None)
    pickup_window_end = serializers.DateTimeField(required=False, allow_null=True, default=None)
    delivery_window_start = serializers.DateTimeField(required=False, allow_null=True, default=None)
    delivery_window_end = serializers.DateTimeField(required=False, allow_null=True, default=None)
