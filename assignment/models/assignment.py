from django.db import models
from django.db.models import Q

from workflow.core.statuses import LEG_INACTIVE_STATUSES, LegStatus


class AssignmentQuerySet(models.QuerySet):
    def active(self):
        return self.exclude(status__in=LEG_INACTIVE_STATUSES)


class Assignment(models.Model):
    """
    One truck slot on an order, bound to one fulfiller.

    Rows are never deleted: releasing a slot moves the row to CANCELLED or
    REJECTED so the history of who held which slot is kept.
    """
    order = models.ForeignKey('orders.Order', on_delete=models.PROTECT, related_name='assignments')
    fulfiller_id = models.CharField(max_length=64, db_index=True)

    status = models.CharField(max_length=20, choices=LegStatus.choices, default=LegStatus.ACCEPTED)

    # This fulfiller's own per-truck price, never the order total
    agreed_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    pickup_window_start = models.DateTimeField(null=True, blank=True)
    pickup_window_end = models.DateTimeField(null=True, blank=True)
    delivery_window_start = models.DateTimeField(null=True, blank=True)
    delivery_window_end = models.DateTimeField(null=True, blank=True)

    release_reason = models.CharField(max_length=255, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AssignmentQuerySet.as_manager()

    class Meta:
        ordering = ['created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'fulfiller_id'],
                condition=~Q(status__in=sorted(LEG_INACTIVE_STATUSES)),
                name='one_active_assignment_per_fulfiller',
            ),
        ]

    @property
    def is_active(self):
        return self.status not in LEG_INACTIVE_STATUSES

    def __str__(self):
        return f"Assignment #{self.pk} of {self.fulfiller_id} on order {self.order_id} ({self.status})"
