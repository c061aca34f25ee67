from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from workflow.core.compliance import minimum_slot_price
from workflow.core.statuses import (
    ACCEPTED_FAMILY,
    RESERVABLE_ORDER_STATUSES,
    OrderStatus,
    PricingMode,
    ProposalStatus,
)


class Order(models.Model):
    """
    A freight posted by a requester, possibly needing several trucks.

    ``status`` and ``accepted_slots`` are only ever written by the workflow
    services (capacity ledger, order transitions, leg roll-up).
    """
    status = models.CharField(
        max_length=40,
        choices=OrderStatus.choices,
        default=OrderStatus.OPEN,
        db_index=True,
    )
    requester_id = models.CharField(max_length=64, db_index=True)

    cargo_type = models.CharField(max_length=40, default='general')
    origin = models.CharField(max_length=255, blank=True)
    destination = models.CharField(max_length=255, blank=True)

    required_slots = models.PositiveIntegerField(default=1, help_text="Number of trucks the freight needs")
    accepted_slots = models.PositiveIntegerField(default=0)

    pricing_mode = models.CharField(max_length=20, choices=PricingMode.choices, default=PricingMode.FIXED)
    fixed_amount = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True,
        help_text="Price per truck for FIXED pricing",
    )
    unit_rate = models.DecimalField(
        max_digits=12, decimal_places=4, null=True, blank=True,
        help_text="Rate per km (PER_DISTANCE) or per tonne (PER_WEIGHT)",
    )
    distance_km = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    weight_kg = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True,
        help_text="Load carried by one truck",
    )

    # Presence flags pushed by the fiscal service, e.g. {"invoice": true}
    fiscal_documents = models.JSONField(default=dict, blank=True)

    delivery_reported_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.CheckConstraint(
                condition=Q(required_slots__gte=1),
                name='order_required_slots_positive',
            ),
            models.CheckConstraint(
                condition=Q(accepted_slots__lte=F('required_slots')),
                name='order_accepted_within_required',
            ),
            models.CheckConstraint(
                condition=~Q(status=OrderStatus.OPEN) | Q(accepted_slots__lt=F('required_slots')),
                name='order_open_has_free_slot',
            ),
            models.CheckConstraint(
                condition=~Q(status__in=sorted(ACCEPTED_FAMILY)) | Q(accepted_slots__gte=1),
                name='order_accepted_family_has_slot',
            ),
        ]

    @property
    def available_slots(self):
        return max(self.required_slots - self.accepted_slots, 0)

    @property
    def is_multi_slot(self):
        return self.required_slots > 1

    @property
    def is_reservable(self):
        return self.status in RESERVABLE_ORDER_STATUSES and self.available_slots > 0

    def confirmation_timeout(self):
        overrides = getattr(settings, 'DELIVERY_CONFIRMATION_TIMEOUT_BY_CARGO', {}) or {}
        hours = overrides.get(self.cargo_type, settings.DELIVERY_CONFIRMATION_TIMEOUT_HOURS)
        return timedelta(hours=hours)

    def confirmation_deadline(self):
        """When the sweep may auto-confirm a reported delivery, or None."""
        if self.status != OrderStatus.DELIVERED_PENDING_CONFIRMATION:
            return None
        reported_at = self.delivery_reported_at or self.updated_at
        return reported_at + self.confirmation_timeout()

    def __str__(self):
        return f"Order #{self.pk} ({self.status}, {self.accepted_slots}/{self.required_slots} trucks)"


class Proposal(models.Model):
    """A fulfiller's per-truck price offer on an open order."""
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name='proposals')
    fulfiller_id = models.CharField(max_length=64, db_index=True)

    proposed_price = models.DecimalField(max_digits=12, decimal_places=2)
    counter_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    message = models.TextField(blank=True)

    status = models.CharField(max_length=20, choices=ProposalStatus.choices, default=ProposalStatus.PENDING)
    assignment = models.OneToOneField(
        'assignment.Assignment',
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='proposal',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']

    @property
    def is_outstanding(self):
        return self.status in (ProposalStatus.PENDING, ProposalStatus.COUNTER_PROPOSED)

    @property
    def current_price(self):
        """The price on the table: the counter offer while one is pending."""
        if self.status == ProposalStatus.COUNTER_PROPOSED and self.counter_price is not None:
            return self.counter_price
        return self.proposed_price

    def __str__(self):
        return f"Proposal #{self.pk} by {self.fulfiller_id} on order {self.order_id} ({self.status})"


class MinimumFreightRate(models.Model):
    """Reference floor per km for a cargo type, used for non-blocking warnings."""
    cargo_type = models.CharField(max_length=40, unique=True)
    min_rate_per_km = models.DecimalField(max_digits=10, decimal_places=4)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['cargo_type']

    @classmethod
    def minimum_price_for(cls, order):
        """Minimum per-truck price for ``order``, or None when no reference applies."""
        rate = cls.objects.filter(cargo_type=order.cargo_type).values_list('min_rate_per_km', flat=True).first()
        return minimum_slot_price(rate, order.distance_km)

    def __str__(self):
        return f"{self.cargo_type}: {self.min_rate_per_km}/km"
