"""
Order status state machine.

    ORDER_PLACED -> ACCEPTED -> ORDER_READY -> ORDER_PICKED_UP  (pickup)
                                            -> ORDER_DELIVERED  (delivery)
    CANCELLED is reachable from ORDER_PLACED, ACCEPTED and ORDER_READY.

ORDER_PICKED_UP, ORDER_DELIVERED and CANCELLED are terminal.
"""
from .exceptions import InvalidTransitionError
from .models import OrderStatus, OrderType

TERMINAL_STATUSES = frozenset({
    OrderStatus.ORDER_PICKED_UP,
    OrderStatus.ORDER_DELIVERED,
    OrderStatus.CANCELLED,
})

# Statuses shown as live dashboard tabs (with badge counts)
ACTIVE_STATUSES = (
    OrderStatus.ORDER_PLACED,
    OrderStatus.ACCEPTED,
    OrderStatus.ORDER_READY,
)

_FULFILMENT_STATUS = {
    OrderType.PICKUP: OrderStatus.ORDER_PICKED_UP,
    OrderType.DELIVERY: OrderStatus.ORDER_DELIVERED,
}


def allowed_next(current: OrderStatus, order_type: OrderType) -> frozenset:
    if current == OrderStatus.ORDER_PLACED:
        return frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED})
    if current == OrderStatus.ACCEPTED:
        return frozenset({OrderStatus.ORDER_READY, OrderStatus.CANCELLED})
    if current == OrderStatus.ORDER_READY:
        return frozenset({_FULFILMENT_STATUS[OrderType(order_type)], OrderStatus.CANCELLED})
    return frozenset()


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def validate_transition(current: OrderStatus, requested: OrderStatus, order_type: OrderType) -> None:
    """Raises InvalidTransitionError unless `requested` is reachable from `current`."""
    current = OrderStatus(current)
    requested = OrderStatus(requested)
    if requested not in allowed_next(current, order_type):
        raise InvalidTransitionError(current.value, requested.value)
