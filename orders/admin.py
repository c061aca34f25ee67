from django.contrib import admin
from .models import MinimumFreightRate, Order, Proposal


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        'id', 'status', 'requester_id', 'cargo_type',
        'accepted_slots', 'required_slots', 'pricing_mode', 'created_at'
    )
    list_filter = ('status', 'pricing_mode', 'cargo_type')
    search_fields = ('requester_id', 'origin', 'destination')
    # Status and slot counters only move through the workflow services
    readonly_fields = ('status', 'accepted_slots', 'delivery_reported_at', 'created_at', 'updated_at')

    fieldsets = (
        ('Freight', {
            'fields': ('requester_id', 'cargo_type', 'origin', 'destination', 'required_slots')
        }),
        ('Pricing', {
            'fields': ('pricing_mode', 'fixed_amount', 'unit_rate', 'distance_km', 'weight_kg')
        }),
        ('Workflow', {
            'fields': ('status', 'accepted_slots', 'delivery_reported_at', 'fiscal_documents')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )


@admin.register(Proposal)
class ProposalAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'fulfiller_id', 'proposed_price', 'counter_price', 'status', 'created_at')
    list_filter = ('status',)
    search_fields = ('fulfiller_id',)
    raw_id_fields = ('order', 'assignment')
    readonly_fields = ('status', 'assignment', 'created_at', 'updated_at')


@admin.register(MinimumFreightRate)
class MinimumFreightRateAdmin(admin.ModelAdmin):
    list_display = ('cargo_type', 'min_rate_per_km', 'updated_at')
    search_fields = ('cargo_type',)
