from .setup import setup_observability
from .metrics import (
    orders_created_total,
    order_transitions_total,
    order_transition_duration_seconds,
    order_cas_conflicts_total,
    broadcast_events_total,
    broadcast_dropped_subscriptions_total,
    broadcast_active_subscriptions
)
