from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'orders'
    verbose_name = 'Freight Orders'

    def ready(self):
        # Connects the Kafka publisher to the capacity_changed signal
        from orders.events import publisher  # noqa: F401
