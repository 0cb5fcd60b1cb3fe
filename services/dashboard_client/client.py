"""
HTTP side of a restaurant dashboard: fetches pages and counts from the order
service into a DashboardReconciler and performs transitions optimistically.
Pushed events (from the /orders/ws socket) are handed to `handle_message`.
"""
import httpx
import structlog

from services.order_service.models import OrderStatus
from services.order_service.schemas import BroadcastEvent, CountsResponse, OrderResponse, PageResponse
from .reconciler import DashboardReconciler

logger = structlog.get_logger(__name__)

REFRESH_HINT = "Order is no longer in that state. The list has been refreshed."


class DashboardError(Exception):
    def __init__(self, status_code: int, code: str, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.code = code
        self.detail = detail

    @property
    def message(self) -> str:
        """Text for the staff member; state races get an actionable hint."""
        if self.code in ("conflict", "invalid_transition"):
            return REFRESH_HINT
        return self.detail


class TransitionOutcomeUnknown(Exception):
    """No answer arrived (timeout or dropped connection); the order may or may not have moved. The view was re-fetched."""


def _error_from(response: httpx.Response) -> DashboardError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = body.get("detail") or response.text or response.reason_phrase
    return DashboardError(response.status_code, body.get("code", "http_error"), str(detail))


class DashboardClient:

    def __init__(self, http: httpx.AsyncClient, token: str, tenant_id: str,
                 active_status=OrderStatus.ORDER_PLACED, page_size: int = 10):
        self.http = http
        self.headers = {"Authorization": f"Bearer {token}"}
        self.view = DashboardReconciler(tenant_id, active_status, page_size)

    @classmethod
    def connect(cls, base_url: str, token: str, tenant_id: str, **kwargs):
        return cls(httpx.AsyncClient(base_url=base_url, timeout=10.0), token, tenant_id, **kwargs)

    async def aclose(self):
        await self.http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def _get(self, path: str, params: dict = None):
        response = await self.http.get(path, params=params, headers=self.headers)
        if response.is_error:
            raise _error_from(response)
        return response.json()

    # --- READS ---

    async def fetch_page(self):
        view = self.view
        data = await self._get(
            f"/status/{view.active_status.value}",
            params={"page": view.page, "pageSize": view.page_size},
        )
        page = PageResponse.model_validate(data)
        view.load_page(page)
        return page

    async def fetch_counts(self):
        snapshot = CountsResponse.model_validate(await self._get("/counts"))
        self.view.load_counts(snapshot)
        return snapshot

    async def refresh(self):
        await self.fetch_page()
        await self.fetch_counts()

    async def _refresh_after_failure(self):
        # The view is already rolled back and flagged; a failed re-fetch leaves it that way
        try:
            await self.refresh()
        except (httpx.TransportError, DashboardError) as e:
            logger.warning("refresh_failed", tenant_id=self.view.tenant_id, error=str(e))

    # --- NAVIGATION ---

    async def switch_tab(self, status):
        self.view.switch_tab(status)
        await self.fetch_page()

    async def set_page_size(self, page_size: int):
        self.view.set_page_size(page_size)
        await self.fetch_page()

    async def go_to_page(self, page: int):
        self.view.go_to_page(page)
        await self.fetch_page()

    # --- WRITES ---

    async def transition(self, order_id: str, to_status) -> OrderResponse:
        to_status = OrderStatus(to_status)
        try:
            self.view.begin_transition(order_id, to_status)
        except KeyError:
            raise DashboardError(404, "not_found", f"Order {order_id} is not on this dashboard") from None

        try:
            response = await self.http.post(
                f"/{order_id}/status", json={"status": to_status.value}, headers=self.headers
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            # Never reached the service: nothing changed there
            logger.warning("transition_unreachable", order_id=order_id, status=to_status.value, error=str(e))
            self.view.fail_transition(order_id)
            await self._refresh_after_failure()
            raise DashboardError(503, "unavailable", "Order service is unreachable, try again") from e
        except httpx.TransportError as e:
            # No answer is not a no: re-query instead of assuming failure
            logger.warning("transition_outcome_unknown", order_id=order_id, status=to_status.value, error=str(e))
            self.view.abandon_transition(order_id)
            await self._refresh_after_failure()
            raise TransitionOutcomeUnknown(str(e)) from e

        if response.is_error:
            error = _error_from(response)
            logger.info("transition_rejected", order_id=order_id, status=to_status.value, code=error.code)
            self.view.fail_transition(order_id)
            await self._refresh_after_failure()
            raise error

        order = OrderResponse.model_validate(response.json())
        self.view.confirm_transition(order)
        return order

    # --- PUSH ---

    def handle_message(self, message: dict) -> bool:
        """Apply one JSON message received on the order events socket."""
        return self.view.apply_event(BroadcastEvent.model_validate(message))
