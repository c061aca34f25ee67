from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import swagger_auto_schema
from rest_framework import filters, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from assignment.models import Assignment, TripProgress
from assignment.serializers import (
    AssignmentSerializer,
    ProgressRequestSerializer,
    ReleaseRequestSerializer,
    TripProgressSerializer,
)
from assignment.services.capacity_ledger import release_slot
from assignment.services.progress_tracker import record_progress
from assignment.services.status_resolver import resolve_status
from workflow.core.labels import source_label, status_label
from workflow.mixins import WorkflowActionMixin


class AssignmentViewSet(WorkflowActionMixin, viewsets.ReadOnlyModelViewSet):
    """
    API endpoint for truck slots. Slots are created by accepting an order or
    a proposal, never directly.
    """
    queryset = Assignment.objects.select_related('order')
    serializer_class = AssignmentSerializer
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['order', 'fulfiller_id', 'status']
    ordering_fields = ['created_at', 'updated_at']
    ordering = ['created_at']

    @swagger_auto_schema(request_body=ReleaseRequestSerializer, responses={200: AssignmentSerializer})
    @action(detail=True, methods=['post'])
    def release(self, request, pk=None):
        """
        Give a truck slot back.
        POST /api/assignments/{id}/release/ {"reason": "cancelled", "note": "..."}
        """
        request_serializer = ReleaseRequestSerializer(data=request.data)
        request_serializer.is_valid(raise_exception=True)
        actor = self.get_actor()
        return self.handle_transition(
            release_slot,
            pk,
            request_serializer.validated_data['reason'],
            actor_role=actor.role,
            actor_id=actor.actor_id,
            note=request_serializer.validated_data['note'],
        )

    @swagger_auto_schema(request_body=ProgressRequestSerializer, responses={200: TripProgressSerializer})
    @action(detail=True, methods=['post'])
    def progress(self, request, pk=None):
        """
        Move the truck of this slot along its trip.
        POST /api/assignments/{id}/progress/ {"status": "LOADING"}
        """
        assignment = self.get_object()
        request_serializer = ProgressRequestSerializer(data=request.data)
        request_serializer.is_valid(raise_exception=True)
        actor = self.get_actor()
        return self.handle_transition(
            record_progress,
            assignment.order_id,
            assignment.fulfiller_id,
            request_serializer.validated_data['status'],
            actor_role=actor.role,
            actor_id=actor.actor_id,
            notes=request_serializer.validated_data['notes'],
            serializer_class=TripProgressSerializer,
        )

    @action(detail=True, methods=['get'], url_path='status')
    def leg_status(self, request, pk=None):
        """Effective status of the leg: trip progress first, then the slot record."""
        assignment = self.get_object()
        resolved = resolve_status(assignment.order_id, assignment.fulfiller_id)
        data = {
            'assignment_id': assignment.pk,
            'order_id': assignment.order_id,
            'fulfiller_id': assignment.fulfiller_id,
            'status': resolved.status,
            'label': str(status_label(resolved.status)) if resolved.is_known else None,
            'source': resolved.source,
            'source_label': str(source_label(resolved.source)),
        }
        progress = TripProgress.objects.filter(
            order_id=assignment.order_id, fulfiller_id=assignment.fulfiller_id,
        ).first()
        if progress is not None:
            data['progress'] = TripProgressSerializer(progress).data
        return Response(data, status=status.HTTP_200_OK)
