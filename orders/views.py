import logging

from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import filters, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from assignment.serializers import AssignmentSerializer
from assignment.services.capacity_ledger import reserve_slot
from assignment.services.status_resolver import resolve_status
from orders.models import Order, Proposal
from orders.serializers import (
    AcceptRequestSerializer,
    DispatchRequestSerializer,
    OrderSerializer,
    PriceRequestSerializer,
    ProposalSerializer,
    TransitionRequestSerializer,
    price_for_actor,
)
from orders.services import dispatcher, proposals
from orders.services.transitions import transition_order
from workflow.core.actions import check_state_consistency, query_action_matrix
from workflow.core.compliance import compliance_notes, missing_documents
from workflow.core.labels import status_label
from workflow.core.statuses import Role
from workflow.mixins import WorkflowActionMixin

logger = logging.getLogger(__name__)


def _missing_actor_id():
    return Response(
        {'error': 'X-Actor-Id header is required for this action.', 'code': 'actor_required'},
        status=status.HTTP_400_BAD_REQUEST,
    )


def _leg_snapshot(order, fulfiller_id):
    assignment = order.assignments.active().filter(fulfiller_id=fulfiller_id).first()
    progress = order.progress_records.filter(fulfiller_id=fulfiller_id).first()
    return (
        assignment.status if assignment else None,
        progress.current_status if progress else None,
    )


def action_matrix_for(order, actor):
    """Action matrix of ``order`` for one actor, fed with the leg data it can see."""
    leg_status = None
    assignment_status = None
    progress_status = None

    if actor.role == Role.FULFILLER and actor.actor_id:
        resolved = resolve_status(order.pk, actor.actor_id)
        leg_status = resolved.status
        assignment_status, progress_status = _leg_snapshot(order, actor.actor_id)
    else:
        # Any inconsistent leg puts the whole order in safe mode
        for fulfiller_id in order.assignments.active().values_list('fulfiller_id', flat=True):
            snapshot = _leg_snapshot(order, fulfiller_id)
            check = check_state_consistency(order.status, *snapshot)
            if not check.is_consistent:
                assignment_status, progress_status = snapshot
                break

    return query_action_matrix(
        order.status,
        actor.role,
        leg_status=leg_status,
        assignment_status=assignment_status,
        progress_status=progress_status,
        required_slots=order.required_slots,
        accepted_slots=order.accepted_slots,
    )


class OrderViewSet(WorkflowActionMixin, viewsets.ModelViewSet):
    """
    API endpoint for freight orders.

    Status changes never go through a plain update: use ``transition``,
    ``dispatch`` or ``accept``.
    """
    queryset = Order.objects.all()
    serializer_class = OrderSerializer
    http_method_names = ['get', 'post', 'head', 'options']
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['status', 'cargo_type', 'pricing_mode', 'requester_id']
    search_fields = ['origin', 'destination', 'cargo_type']
    ordering_fields = ['created_at', 'required_slots', 'accepted_slots']
    ordering = ['-created_at']

    def create(self, request, *args, **kwargs):
        actor = self.get_actor()
        if actor.role != Role.REQUESTER:
            return Response(
                {'error': 'Only requesters can post freight.', 'code': 'forbidden_for_role'},
                status=status.HTTP_403_FORBIDDEN,
            )
        if not actor.actor_id:
            return _missing_actor_id()

        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = serializer.save(requester_id=actor.actor_id)
        logger.info(f"Order {order.pk} posted by {actor.actor_id} for {order.required_slots} truck(s)")
        return Response(self.get_serializer(order).data, status=status.HTTP_201_CREATED)

    @swagger_auto_schema(
        responses={200: openapi.Response("Ordered action definitions for the caller.")},
        operation_description="Actions the caller may be offered on this order. Advisory only.",
    )
    @action(detail=True, methods=['get'])
    def actions(self, request, pk=None):
        """
        GET /api/orders/{id}/actions/
        """
        order = self.get_object()
        matrix = action_matrix_for(order, self.get_actor())
        return Response({
            'order_id': order.pk,
            'status': order.status,
            'status_label': str(status_label(order.status)),
            'safe_mode': matrix.safe_mode,
            'notice': matrix.notice,
            'actions': [
                {
                    'action': definition.action,
                    'label': definition.label,
                    'scope': definition.scope,
                    'target_status': definition.target_status,
                    'primary': definition.primary,
                    'destructive': definition.destructive,
                }
                for definition in matrix.actions
            ],
        })

    @action(detail=True, methods=['get'])
    def price(self, request, pk=None):
        order = self.get_object()
        actor = self.get_actor()
        return Response(price_for_actor(order, actor.role, actor.actor_id).as_dict())

    @action(detail=True, methods=['get'])
    def compliance(self, request, pk=None):
        order = self.get_object()
        return Response({
            'order_id': order.pk,
            'cargo_type': order.cargo_type,
            'missing_documents': missing_documents(order.cargo_type, order.fiscal_documents),
            'notes': compliance_notes(order.cargo_type, order.fiscal_documents),
        })

    @swagger_auto_schema(request_body=TransitionRequestSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=['post'])
    def transition(self, request, pk=None):
        """
        Move the order to another status.
        POST /api/orders/{id}/transition/ {"status": "CANCELLED"}
        """
        request_serializer = TransitionRequestSerializer(data=request.data)
        request_serializer.is_valid(raise_exception=True)
        actor = self.get_actor()
        return self.handle_transition(
            transition_order,
            pk,
            request_serializer.validated_data['status'],
            actor_role=actor.role,
            actor_id=actor.actor_id,
        )

    @swagger_auto_schema(request_body=DispatchRequestSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=['post'], url_path='dispatch', url_name='dispatch')
    def dispatch_action(self, request, pk=None):
        """
        Run an action id taken from the action matrix.
        POST /api/orders/{id}/dispatch/ {"action": "ADVANCE", "payload": {}}
        """
        request_serializer = DispatchRequestSerializer(data=request.data)
        request_serializer.is_valid(raise_exception=True)
        actor = self.get_actor()
        return self.handle_transition(
            dispatcher.dispatch_action,
            pk,
            request_serializer.validated_data['action'],
            actor_role=actor.role,
            actor_id=actor.actor_id,
            payload=request_serializer.validated_data['payload'],
        )

    @swagger_auto_schema(
        request_body=AcceptRequestSerializer,
        responses={
            201: AssignmentSerializer,
            409: openapi.Response("No truck slot available."),
        },
        operation_description="Reserve one truck slot on the order for the calling fulfiller.",
    )
    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        actor = self.get_actor()
        if not actor.actor_id:
            return _missing_actor_id()
        request_serializer = AcceptRequestSerializer(data=request.data)
        request_serializer.is_valid(raise_exception=True)
        return self.handle_transition(
            reserve_slot,
            pk,
            actor.actor_id,
            actor_role=actor.role,
            **request_serializer.validated_data,
            serializer_class=AssignmentSerializer,
            success_status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['get'], url_path='proposals', url_name='proposals')
    def order_proposals(self, request, pk=None):
        order = self.get_object()
        actor = self.get_actor()
        queryset = order.proposals.all()
        if actor.role == Role.FULFILLER:
            queryset = queryset.filter(fulfiller_id=actor.actor_id)
        elif actor.role == Role.REQUESTER and actor.actor_id != order.requester_id:
            queryset = queryset.none()
        elif actor.role not in (Role.REQUESTER, Role.ADMIN):
            queryset = queryset.none()
        return Response(ProposalSerializer(queryset, many=True).data)


class ProposalViewSet(WorkflowActionMixin, viewsets.ModelViewSet):
    """
    API endpoint for price proposals.

    A fulfiller sees their own proposals, a requester the proposals on their
    orders, an admin everything.
    """
    queryset = Proposal.objects.select_related('order')
    serializer_class = ProposalSerializer
    http_method_names = ['get', 'post', 'head', 'options']
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['order', 'status', 'fulfiller_id']
    ordering_fields = ['created_at', 'proposed_price']
    ordering = ['-created_at']

    def get_queryset(self):
        queryset = super().get_queryset()
        actor = self.get_actor()
        if actor.role == Role.ADMIN:
            return queryset
        if actor.role == Role.FULFILLER and actor.actor_id:
            return queryset.filter(fulfiller_id=actor.actor_id)
        if actor.role == Role.REQUESTER and actor.actor_id:
            return queryset.filter(order__requester_id=actor.actor_id)
        return queryset.none()

    def create(self, request, *args, **kwargs):
        """
        Submit a proposal.
        POST /api/proposals/ {"order": 1, "proposed_price": "1500.00", "message": "..."}
        """
        actor = self.get_actor()
        if not actor.actor_id:
            return _missing_actor_id()
        order_id = request.data.get('order')
        if not order_id:
            return Response({'error': "'order' is required", 'code': 'invalid_request'},
                            status=status.HTTP_400_BAD_REQUEST)
        return self.handle_transition(
            proposals.submit_proposal,
            order_id,
            actor.actor_id,
            request.data.get('proposed_price'),
            actor_role=actor.role,
            message=request.data.get('message', ''),
            success_status=status.HTTP_201_CREATED,
        )

    @swagger_auto_schema(request_body=PriceRequestSerializer, responses={200: ProposalSerializer})
    @action(detail=True, methods=['post'])
    def counter(self, request, pk=None):
        request_serializer = PriceRequestSerializer(data=request.data)
        request_serializer.is_valid(raise_exception=True)
        actor = self.get_actor()
        return self.handle_transition(
            proposals.counter_proposal,
            pk,
            request_serializer.validated_data['price'],
            actor_role=actor.role,
            actor_id=actor.actor_id,
        )

    @swagger_auto_schema(request_body=PriceRequestSerializer, responses={200: ProposalSerializer})
    @action(detail=True, methods=['post'])
    def revise(self, request, pk=None):
        request_serializer = PriceRequestSerializer(data=request.data)
        request_serializer.is_valid(raise_exception=True)
        actor = self.get_actor()
        return self.handle_transition(
            proposals.revise_proposal,
            pk,
            request_serializer.validated_data['price'],
            actor_role=actor.role,
            actor_id=actor.actor_id,
            message=request_serializer.validated_data['message'],
        )

    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        actor = self.get_actor()
        return self.handle_transition(
            proposals.accept_proposal, pk, actor_role=actor.role, actor_id=actor.actor_id,
        )

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        actor = self.get_actor()
        return self.handle_transition(
            proposals.reject_proposal, pk, actor_role=actor.role, actor_id=actor.actor_id,
        )
