"""
Client-side view model for a restaurant dashboard.

Three sources feed it: page fetches, broadcast events and the user's own
transition requests. All merges are keyed by order ID so any of them can
arrive twice, or out of step with the others, without corrupting the view:

* an (order ID, status) pair moves the badge counts at most once, so the
  broadcast echo of a transition this dashboard made is a no-op;
* events carrying an older `version` than one already seen are ignored;
* optimistic moves are remembered until the server confirms or rejects
  them, and a rejection puts the order back and flags a refresh;
* a request that got no answer keeps its target status counted until a
  fetched copy shows the order unmoved.
"""
from datetime import timezone

import structlog

from services.order_service.models import OrderStatus
from services.order_service.schemas import BroadcastEvent, CountsResponse, OrderResponse, PageResponse

logger = structlog.get_logger(__name__)


def _sort_key(order: OrderResponse):
    created_at = order.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (created_at, order.id)


class PendingTransition:
    def __init__(self, order: OrderResponse, from_status: OrderStatus, to_status: OrderStatus):
        self.order = order
        self.from_status = from_status
        self.to_status = to_status


class DashboardReconciler:

    def __init__(self, tenant_id: str, active_status=OrderStatus.ORDER_PLACED, page_size: int = 10):
        self.tenant_id = tenant_id
        self.active_status = OrderStatus(active_status)
        self.page = 1
        self.page_size = page_size
        self.total_count = 0
        self.total_pages = 0
        self.counts = {status.value: 0 for status in OrderStatus}
        self.needs_refresh = True
        self._lists = {}  # status -> orders held locally for that tab
        self._applied = set()  # (order_id, status) already reflected in counts
        self._versions = {}  # order_id -> highest version seen
        self._pending = {}  # order_id -> PendingTransition
        self._unconfirmed = {}  # order_id -> PendingTransition whose outcome is unknown

    # --- VIEW ---

    @property
    def orders(self) -> list:
        return list(self._lists.get(self.active_status, []))

    def order_ids(self, status=None) -> list:
        status = self.active_status if status is None else OrderStatus(status)
        return [o.id for o in self._lists.get(status, [])]

    def find(self, order_id: str):
        for orders in self._lists.values():
            for order in orders:
                if order.id == order_id:
                    return order
        return None

    # --- NAVIGATION (caller re-fetches after each) ---

    def switch_tab(self, status):
        self.active_status = OrderStatus(status)
        self.page = 1
        self.needs_refresh = True

    def set_page_size(self, page_size: int):
        # A different page size makes the current page number meaningless
        self.page_size = page_size
        self.page = 1
        self.needs_refresh = True

    def go_to_page(self, page: int):
        self.page = max(1, page)
        self.needs_refresh = True

    # --- SERVER STATE ---

    def load_page(self, page: PageResponse, status=None):
        status = self.active_status if status is None else OrderStatus(status)
        rows = []
        for order in page.orders:
            if order.id in self._pending:
                # Moved away locally; the fetch raced the confirmation
                continue
            if order.version < self._versions.get(order.id, 0):
                continue
            self._settle_unconfirmed(order)
            self._remember(order)
            self._applied.add((order.id, OrderStatus(order.status)))
            rows.append(order)
        self._lists[status] = rows
        if status == self.active_status:
            self.page = page.page
            self.page_size = page.page_size
            self.total_count = page.total_count
            self.total_pages = page.total_pages
            self.needs_refresh = False

    def load_counts(self, snapshot: CountsResponse):
        if snapshot.tenant_id != self.tenant_id:
            return
        self.counts = {status.value: snapshot.counts.get(status.value, 0) for status in OrderStatus}
        # Requests still in flight are not in the snapshot yet
        for pending in self._pending.values():
            self._shift_counts(pending.from_status, pending.to_status)

    # --- BROADCAST EVENTS ---

    def apply_event(self, event: BroadcastEvent) -> bool:
        """Merge one pushed event. Returns False when it changed nothing."""
        if event.tenant_id != self.tenant_id:
            logger.warning("foreign_tenant_event_ignored", tenant_id=self.tenant_id, event_tenant=event.tenant_id)
            return False

        order = event.order
        if order.version < self._versions.get(order.id, 0):
            return False

        unconfirmed = self._unconfirmed.get(order.id)
        if unconfirmed is not None and order.version > unconfirmed.order.version:
            # The order moved on the server; whatever our unanswered request did is settled
            del self._unconfirmed[order.id]

        status = OrderStatus(order.status)
        key = (order.id, status)
        first_seen = key not in self._applied
        self._remember(order)

        if event.kind == "created":
            if first_seen:
                self._applied.add(key)
                self.counts[status.value] += 1
            if status == self.active_status:
                self._upsert(status, order)
            return True

        if first_seen:
            self._applied.add(key)
            if event.previous_status is not None:
                self._shift_counts(OrderStatus(event.previous_status), status)
            else:
                self.counts[status.value] += 1

        pending = self._pending.get(order.id)
        if pending is not None and pending.to_status == status:
            del self._pending[order.id]

        if status == OrderStatus.CANCELLED:
            # Cancelled orders leave every live list, whatever tab is open
            for held in list(self._lists):
                if held != OrderStatus.CANCELLED:
                    self._remove(held, order.id)
        else:
            for held in list(self._lists):
                if held != status:
                    self._remove(held, order.id)

        if status == self.active_status:
            self._upsert(status, order)
        return True

    # --- OPTIMISTIC TRANSITIONS ---

    def begin_transition(self, order_id: str, to_status) -> PendingTransition:
        to_status = OrderStatus(to_status)
        order = self.find(order_id)
        if order is None:
            raise KeyError(order_id)
        pending = PendingTransition(order, OrderStatus(order.status), to_status)
        self._pending[order_id] = pending

        for held in list(self._lists):
            self._remove(held, order_id)
        key = (order_id, to_status)
        if key not in self._applied:
            self._applied.add(key)
            self._shift_counts(pending.from_status, to_status)
        return pending

    def confirm_transition(self, order: OrderResponse):
        """Server accepted the transition; `order` is its response."""
        self._pending.pop(order.id, None)
        self._remember(order)
        status = OrderStatus(order.status)
        key = (order.id, status)
        if key not in self._applied:
            self._applied.add(key)
        if status == self.active_status:
            self._upsert(status, order)

    def fail_transition(self, order_id: str):
        """Server rejected the transition: undo the optimistic move and ask for a refresh."""
        pending = self._pending.pop(order_id, None)
        self.needs_refresh = True
        if pending is None:
            return
        key = (order_id, pending.to_status)
        if key in self._applied:
            self._applied.discard(key)
            self._shift_counts(pending.to_status, pending.from_status)
        # Only restore if nothing newer about this order arrived meanwhile
        if self._versions.get(order_id, 0) <= pending.order.version:
            if pending.from_status in self._lists:
                self._upsert(pending.from_status, pending.order)

    def abandon_transition(self, order_id: str):
        """No answer from the server: the move may or may not have been applied.

        The order leaves the pending set so the next fetch shows wherever the
        server has it. The target status stays counted, so a late echo of an
        applied move is not counted twice; a fetched copy showing the order
        unmoved releases it.
        """
        pending = self._pending.pop(order_id, None)
        self.needs_refresh = True
        if pending is not None:
            self._unconfirmed[order_id] = pending

    # --- INTERNALS ---

    def _remember(self, order: OrderResponse):
        if order.version > self._versions.get(order.id, 0):
            self._versions[order.id] = order.version

    def _settle_unconfirmed(self, order: OrderResponse):
        unconfirmed = self._unconfirmed.get(order.id)
        if unconfirmed is None or order.version < unconfirmed.order.version:
            return
        del self._unconfirmed[order.id]
        if order.version == unconfirmed.order.version:
            # Same copy we tried to move: the request never took effect
            self._applied.discard((order.id, unconfirmed.to_status))

    def _shift_counts(self, from_status: OrderStatus, to_status: OrderStatus):
        self.counts[from_status.value] = max(0, self.counts[from_status.value] - 1)
        self.counts[to_status.value] += 1

    def _upsert(self, status: OrderStatus, order: OrderResponse):
        orders = self._lists.setdefault(status, [])
        existing = next((i for i, o in enumerate(orders) if o.id == order.id), None)
        if existing is not None:
            orders[existing] = order
            return
        if status == self.active_status:
            self.total_count += 1
            self.total_pages = -(-self.total_count // self.page_size)
            # Newer than anything on a later page; only page 1 shows it
            if self.page != 1:
                return
        orders.append(order)
        orders.sort(key=_sort_key, reverse=True)

    def _remove(self, status: OrderStatus, order_id: str):
        orders = self._lists.get(status)
        if not orders:
            return
        kept = [o for o in orders if o.id != order_id]
        if len(kept) == len(orders):
            return
        self._lists[status] = kept
        if status == self.active_status:
            self.total_count = max(0, self.total_count - 1)
            self.total_pages = -(-self.total_count // self.page_size)
