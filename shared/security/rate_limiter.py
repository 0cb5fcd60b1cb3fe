from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from .jwt_handler import tenant_from_token

def tenant_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    All staff of one restaurant share a bucket, keyed by the tenant claim of
    the bearer token. Falls back to the client's IP address if unauthenticated.
    """
    auth_header = request.headers.get("Authorization")

    if auth_header and auth_header.startswith("Bearer "):
        tenant_id = tenant_from_token(auth_header.split(" ", 1)[1])
        if tenant_id:
            return f"tenant:{tenant_id}"

    return f"ip:{get_remote_address(request)}"

limiter = Limiter(key_func=tenant_or_ip)
