import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.config import settings

# Admin token header name
ADMIN_TOKEN_HEADER = "X-Admin-Token"

admin_token_header = APIKeyHeader(name=ADMIN_TOKEN_HEADER, auto_error=False)


def require_admin(token: Optional[str] = Depends(admin_token_header)) -> None:
    """
    Guard operator endpoints with the shared ADMIN_API_TOKEN.
    With no token configured the endpoints are closed.
    """
    expected = settings.ADMIN_API_TOKEN
    if not expected or not token or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )


def get_breakers(request: Request) -> CircuitBreakerRegistry:
    """The registry built in app.main's lifespan."""
    return request.app.state.breakers
