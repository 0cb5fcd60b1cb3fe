from .jwt_handler import create_access_token, create_dashboard_token, verify_access_token, tenant_from_token
from .api_key import verify_api_key
from .dependencies import get_current_tenant, get_websocket_tenant, verify_internal_api_key
from .rate_limiter import limiter, tenant_or_ip

__all__ = [
    "create_access_token",
    "create_dashboard_token",
    "verify_access_token",
    "tenant_from_token",
    "verify_api_key",
    "get_current_tenant",
    "get_websocket_tenant",
    "verify_internal_api_key",
    "limiter",
    "tenant_or_ip"
]
