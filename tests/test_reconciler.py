"""Dashboard view model: merging fetches, pushed events and optimistic moves."""

from datetime import datetime, timedelta, timezone

import pytest

from services.dashboard_client.reconciler import DashboardReconciler
from services.order_service.models import OrderStatus
from services.order_service.schemas import BroadcastEvent, CountsResponse, OrderResponse, PageResponse

S = OrderStatus
BASE = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


def order(order_id, status=S.ORDER_PLACED, version=1, minute=0, tenant_id="tenant-a"):
    created_at = BASE + timedelta(minutes=minute)
    return OrderResponse(
        id=order_id,
        tenant_id=tenant_id,
        restaurant_name=None,
        status=status,
        order_type="delivery",
        items=[],
        total_amount=120.0,
        payment_method="UPI",
        payment_status="COMPLETED",
        customer_name=None,
        customer_phone=None,
        created_at=created_at,
        updated_at=created_at,
        version=version,
    )


def created(o):
    return BroadcastEvent(kind="created", tenant_id=o.tenant_id, order=o)


def moved(o, previous):
    return BroadcastEvent(kind="statusChanged", tenant_id=o.tenant_id, order=o, previous_status=previous)


def page_of(*orders, page=1, page_size=10, total=None):
    total = len(orders) if total is None else total
    return PageResponse(
        orders=list(orders),
        total_count=total,
        page=page,
        page_size=page_size,
        total_pages=-(-total // page_size),
    )


def counts_of(tenant_id="tenant-a", **counts):
    return CountsResponse(tenant_id=tenant_id, counts={s.value: counts.get(s.value, 0) for s in OrderStatus})


@pytest.fixture
def view():
    return DashboardReconciler("tenant-a", S.ORDER_PLACED, page_size=10)


class TestCreated:
    def test_new_order_is_prepended_and_counted(self, view):
        view.load_page(page_of(order("o1", minute=1)))
        view.load_counts(counts_of(ORDER_PLACED=1))

        assert view.apply_event(created(order("o2", minute=2)))

        assert view.order_ids() == ["o2", "o1"]
        assert view.counts["ORDER_PLACED"] == 2
        assert view.total_count == 2

    def test_duplicate_created_event_changes_nothing(self, view):
        view.load_page(page_of())
        event = created(order("o1"))

        view.apply_event(event)
        view.apply_event(event)

        assert view.order_ids() == ["o1"]
        assert view.counts["ORDER_PLACED"] == 1
        assert view.total_count == 1

    def test_created_on_another_tab_only_moves_the_badge(self, view):
        view.switch_tab(S.ACCEPTED)
        view.load_page(page_of())

        view.apply_event(created(order("o1")))

        assert view.orders == []
        assert view.counts["ORDER_PLACED"] == 1

    def test_created_while_on_a_later_page_is_counted_not_shown(self, view):
        view.load_page(page_of(*[order(f"o{i}", minute=i) for i in range(10)], page=2, total=20))

        view.apply_event(created(order("new", minute=60)))

        assert "new" not in view.order_ids()
        assert view.total_count == 21
        assert view.total_pages == 3


class TestStatusChanged:
    def test_order_leaves_a_tab_it_no_longer_matches(self, view):
        o1 = order("o1")
        view.load_page(page_of(o1))
        view.load_counts(counts_of(ORDER_PLACED=1))

        view.apply_event(moved(order("o1", S.ACCEPTED, version=2), S.ORDER_PLACED))

        assert view.orders == []
        assert view.counts["ORDER_PLACED"] == 0
        assert view.counts["ACCEPTED"] == 1

    def test_created_then_moved_away_is_gone(self, view):
        view.load_page(page_of())

        view.apply_event(created(order("o1")))
        view.apply_event(moved(order("o1", S.ACCEPTED, version=2), S.ORDER_PLACED))

        assert view.orders == []
        assert view.counts["ORDER_PLACED"] == 0
        assert view.counts["ACCEPTED"] == 1

    def test_order_joins_the_tab_it_now_matches(self, view):
        view.switch_tab(S.ACCEPTED)
        view.load_page(page_of(order("o1", S.ACCEPTED, version=2, minute=1)), S.ACCEPTED)

        view.apply_event(moved(order("o2", S.ACCEPTED, version=2, minute=5), S.ORDER_PLACED))

        assert view.order_ids() == ["o2", "o1"]

    def test_cancelled_order_leaves_every_list(self, view):
        view.load_page(page_of(order("o2", S.ACCEPTED, version=2)), S.ACCEPTED)
        view.switch_tab(S.ORDER_READY)
        view.load_page(page_of(order("o2", S.ORDER_READY, version=3)))

        view.apply_event(moved(order("o2", S.CANCELLED, version=4), S.ORDER_READY))

        assert view.order_ids(S.ACCEPTED) == []
        assert view.order_ids(S.ORDER_READY) == []
        assert view.counts["CANCELLED"] == 1

    def test_cancelled_order_appears_on_the_cancelled_tab(self, view):
        view.switch_tab(S.CANCELLED)
        view.load_page(page_of())

        view.apply_event(moved(order("o3", S.CANCELLED, version=2), S.ORDER_PLACED))

        assert view.order_ids() == ["o3"]

    def test_stale_event_is_ignored(self, view):
        view.switch_tab(S.ORDER_READY)
        view.load_page(page_of(order("o1", S.ORDER_READY, version=3)))

        # Late delivery of an older change
        assert not view.apply_event(moved(order("o1", S.ACCEPTED, version=2), S.ORDER_PLACED))

        assert view.order_ids() == ["o1"]
        assert view.find("o1").status == S.ORDER_READY

    def test_foreign_tenant_event_is_ignored(self, view):
        view.load_page(page_of())

        assert not view.apply_event(created(order("x1", tenant_id="tenant-b")))

        assert view.orders == []
        assert view.counts["ORDER_PLACED"] == 0

    def test_repeated_status_changed_counts_once(self, view):
        view.load_page(page_of(order("o1")))
        view.load_counts(counts_of(ORDER_PLACED=1))
        event = moved(order("o1", S.ACCEPTED, version=2), S.ORDER_PLACED)

        view.apply_event(event)
        view.apply_event(event)

        assert view.counts["ORDER_PLACED"] == 0
        assert view.counts["ACCEPTED"] == 1


class TestOptimistic:
    def test_begin_moves_the_order_out_at_once(self, view):
        view.load_page(page_of(order("o1"), order("o2", minute=1)))
        view.load_counts(counts_of(ORDER_PLACED=2))

        view.begin_transition("o1", S.ACCEPTED)

        assert view.order_ids() == ["o2"]
        assert view.counts["ORDER_PLACED"] == 1
        assert view.counts["ACCEPTED"] == 1

    def test_echo_of_own_transition_is_not_applied_twice(self, view):
        view.load_page(page_of(order("o1")))
        view.load_counts(counts_of(ORDER_PLACED=1))

        view.begin_transition("o1", S.ACCEPTED)
        accepted = order("o1", S.ACCEPTED, version=2)
        view.confirm_transition(accepted)
        view.apply_event(moved(accepted, S.ORDER_PLACED))

        assert view.counts["ORDER_PLACED"] == 0
        assert view.counts["ACCEPTED"] == 1
        assert view.orders == []

    def test_echo_before_the_response_is_not_applied_twice(self, view):
        view.load_page(page_of(order("o1")))
        view.load_counts(counts_of(ORDER_PLACED=1))

        view.begin_transition("o1", S.ACCEPTED)
        accepted = order("o1", S.ACCEPTED, version=2)
        view.apply_event(moved(accepted, S.ORDER_PLACED))
        view.confirm_transition(accepted)

        assert view.counts["ORDER_PLACED"] == 0
        assert view.counts["ACCEPTED"] == 1

    def test_failure_restores_the_order_and_asks_for_refresh(self, view):
        view.load_page(page_of(order("o1")))
        view.load_counts(counts_of(ORDER_PLACED=1))

        view.begin_transition("o1", S.ACCEPTED)
        view.fail_transition("o1")

        assert view.order_ids() == ["o1"]
        assert view.counts["ORDER_PLACED"] == 1
        assert view.counts["ACCEPTED"] == 0
        assert view.needs_refresh

    def test_refetch_during_flight_does_not_resurrect_the_order(self, view):
        view.load_page(page_of(order("o1")))
        view.begin_transition("o1", S.ACCEPTED)

        # Page fetched before the server applied the move
        view.load_page(page_of(order("o1")))

        assert view.orders == []

    def test_counts_snapshot_during_flight_keeps_the_move(self, view):
        view.load_page(page_of(order("o1")))
        view.begin_transition("o1", S.ACCEPTED)

        view.load_counts(counts_of(ORDER_PLACED=1))

        assert view.counts["ORDER_PLACED"] == 0
        assert view.counts["ACCEPTED"] == 1

    def test_unanswered_move_is_not_counted_twice_by_its_echo(self, view):
        view.load_page(page_of(order("o1")))
        view.load_counts(counts_of(ORDER_PLACED=1))
        view.begin_transition("o1", S.ACCEPTED)

        view.abandon_transition("o1")
        # The server did apply it: the re-fetch and its counts show it moved
        view.load_page(page_of())
        view.load_counts(counts_of(ACCEPTED=1))
        view.apply_event(moved(order("o1", S.ACCEPTED, version=2), S.ORDER_PLACED))

        assert view.counts["ORDER_PLACED"] == 0
        assert view.counts["ACCEPTED"] == 1
        assert view.needs_refresh is False

    def test_unanswered_move_released_when_fetch_shows_it_unmoved(self, view):
        view.load_page(page_of(order("o1")))
        view.load_counts(counts_of(ORDER_PLACED=1))
        view.begin_transition("o1", S.ACCEPTED)

        view.abandon_transition("o1")
        view.load_page(page_of(order("o1")))
        view.load_counts(counts_of(ORDER_PLACED=1))

        assert view.order_ids() == ["o1"]
        # A real move later on is counted normally
        view.apply_event(moved(order("o1", S.ACCEPTED, version=2), S.ORDER_PLACED))
        assert view.counts["ORDER_PLACED"] == 0
        assert view.counts["ACCEPTED"] == 1

    def test_abandoned_order_reappears_on_refetch(self, view):
        view.load_page(page_of(order("o1")))
        view.begin_transition("o1", S.ACCEPTED)

        view.abandon_transition("o1")

        assert view.needs_refresh
        view.load_page(page_of(order("o1")))
        assert view.order_ids() == ["o1"]

    def test_unknown_order_cannot_be_moved(self, view):
        with pytest.raises(KeyError):
            view.begin_transition("nope", S.ACCEPTED)


class TestNavigation:
    def test_switching_tab_returns_to_page_one(self, view):
        view.load_page(page_of(*[order(f"o{i}") for i in range(10)], page=3, total=40))

        view.switch_tab(S.ACCEPTED)

        assert view.page == 1
        assert view.active_status == S.ACCEPTED
        assert view.needs_refresh

    def test_changing_page_size_returns_to_page_one(self, view):
        view.go_to_page(3)

        view.set_page_size(25)

        assert view.page == 1
        assert view.page_size == 25
        assert view.needs_refresh

    def test_loading_a_page_clears_the_refresh_flag(self, view):
        assert view.needs_refresh
        view.load_page(page_of())
        assert not view.needs_refresh

    def test_foreign_counts_are_ignored(self, view):
        view.load_counts(counts_of("tenant-b", ORDER_PLACED=9))
        assert view.counts["ORDER_PLACED"] == 0
