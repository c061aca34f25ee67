from django.contrib import admin
from .models import Assignment, TripProgress


@admin.register(Assignment)
class AssignmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'fulfiller_id', 'status', 'agreed_price', 'created_at', 'released_at')
    list_filter = ('status',)
    search_fields = ('fulfiller_id',)
    raw_id_fields = ('order',)
    readonly_fields = ('status', 'release_reason', 'released_at', 'created_at', 'updated_at')


@admin.register(TripProgress)
class TripProgressAdmin(admin.ModelAdmin):
    list_display = ('order', 'fulfiller_id', 'current_status', 'updated_at')
    list_filter = ('current_status',)
    search_fields = ('fulfiller_id',)
    raw_id_fields = ('order',)
    readonly_fields = (
        'current_status', 'accepted_at', 'loading_at', 'loaded_at',
        'in_transit_at', 'delivered_at', 'completed_at', 'created_at', 'updated_at'
    )
