from fastapi import Depends, HTTPException, Query, Request, WebSocket, status
from fastapi.security import OAuth2PasswordBearer, APIKeyHeader
from .jwt_handler import tenant_from_token
from .api_key import verify_api_key

# Defines the expected header format (Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

# Defines the expected internal service header
api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)

async def get_current_tenant(request: Request, token: str = Depends(oauth2_scheme)) -> str:
    """Dependency to validate the dashboard JWT and return its tenant (restaurant) ID."""
    tenant_id = tenant_from_token(token)
    if tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Store in request state for downstream use (like rate limiting)
    request.state.tenant_id = tenant_id
    return tenant_id

async def get_websocket_tenant(websocket: WebSocket, token: str | None = Query(default=None)) -> str | None:
    """Browsers cannot set headers on a WebSocket handshake, so the token rides in the query string.

    Returns None for a bad token; the endpoint closes the socket with a policy violation.
    """
    return tenant_from_token(token)

async def verify_internal_api_key(api_key: str = Depends(api_key_header)) -> bool:
    """Dependency to validate service-to-service internal requests."""
    if not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header"
        )
    return True
