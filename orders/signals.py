from django.dispatch import Signal

# Sent after commit whenever a slot is reserved or released.
# kwargs: order_id, accepted_slots, required_slots, status, reason
capacity_changed = Signal()
