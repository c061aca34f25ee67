import logging

from django.core.exceptions import ObjectDoesNotExist
from rest_framework import status
from rest_framework.response import Response

from workflow.actors import actor_from_request
from workflow.exceptions import ForbiddenForRole, IllegalTransition, SlotUnavailable, WorkflowError

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = (
    (SlotUnavailable, status.HTTP_409_CONFLICT),
    (ForbiddenForRole, status.HTTP_403_FORBIDDEN),
    (IllegalTransition, status.HTTP_400_BAD_REQUEST),
    (WorkflowError, status.HTTP_400_BAD_REQUEST),
)


class WorkflowActionMixin:
    """
    Shared plumbing for viewsets that call workflow services.

    ``handle_transition`` runs one service call and turns domain errors into
    ``{"error", "code"}`` responses.
    """

    def get_actor(self):
        return actor_from_request(self.request)

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['actor'] = self.get_actor()
        return context

    def handle_transition(self, service_func, *args, serializer_class=None,
                          success_status=status.HTTP_200_OK, **kwargs):
        try:
            result = service_func(*args, **kwargs)
        except WorkflowError as e:
            for error_class, http_status in ERROR_STATUS_CODES:
                if isinstance(e, error_class):
                    return Response(e.as_dict(), status=http_status)
        except ObjectDoesNotExist:
            return Response({'error': 'Not found.', 'code': 'not_found'}, status=status.HTTP_404_NOT_FOUND)
        except ValueError as e:
            return Response({'error': str(e), 'code': 'invalid_request'}, status=status.HTTP_400_BAD_REQUEST)

        serializer_class = serializer_class or self.get_serializer_class()
        if result is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        data = serializer_class(result, context=self.get_serializer_context()).data
        return Response(data, status=success_status)
