from prometheus_client import Counter, Histogram, Gauge

# Business Metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total orders placed",
    ["order_type"] # Labels: 'delivery', 'pickup'
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Status transitions attempted",
    ["to_status", "outcome"] # outcome: 'applied', 'invalid', 'conflict'
)

order_transition_duration_seconds = Histogram(
    "order_transition_duration_seconds",
    "Time to validate and commit a status transition"
)

order_cas_conflicts_total = Counter(
    "order_cas_conflicts_total",
    "Compare-and-set transitions that lost a race",
    ["retried"] # 'true' when a retry followed, 'false' when surfaced
)

broadcast_events_total = Counter(
    "broadcast_events_total",
    "Events published to dashboard subscriptions",
    ["kind"] # Labels: 'created', 'statusChanged'
)

broadcast_dropped_subscriptions_total = Counter(
    "broadcast_dropped_subscriptions_total",
    "Subscriptions closed because their buffer overflowed"
)

broadcast_active_subscriptions = Gauge(
    "broadcast_active_subscriptions",
    "Number of currently connected dashboard subscriptions"
)
