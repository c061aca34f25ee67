from django.db import models

from workflow.core.statuses import LegStatus


class TripProgress(models.Model):
    """
    Fine-grained status of one fulfiller's leg.

    Created on the first movement after acceptance. Once it exists it is the
    authoritative status for the (order, fulfiller) pair.
    """
    TIMESTAMP_FIELDS = {
        LegStatus.ACCEPTED: 'accepted_at',
        LegStatus.LOADING: 'loading_at',
        LegStatus.LOADED: 'loaded_at',
        LegStatus.IN_TRANSIT: 'in_transit_at',
        LegStatus.DELIVERED: 'delivered_at',
        LegStatus.COMPLETED: 'completed_at',
    }

    order = models.ForeignKey('orders.Order', on_delete=models.PROTECT, related_name='progress_records')
    fulfiller_id = models.CharField(max_length=64, db_index=True)
    current_status = models.CharField(max_length=20, choices=LegStatus.choices)

    accepted_at = models.DateTimeField(null=True, blank=True)
    loading_at = models.DateTimeField(null=True, blank=True)
    loaded_at = models.DateTimeField(null=True, blank=True)
    in_transit_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = 'trip progress'
        constraints = [
            models.UniqueConstraint(fields=['order', 'fulfiller_id'], name='one_progress_per_leg'),
        ]

    def stamp(self, status, when):
        """Record when ``status`` was reached; the first time wins."""
        field = self.TIMESTAMP_FIELDS.get(status)
        if field and getattr(self, field) is None:
            setattr(self, field, when)
            return field
        return None

    def __str__(self):
        return f"Progress of {self.fulfiller_id} on order {self.order_id}: {self.current_status}"
