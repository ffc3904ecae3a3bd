from typing import Optional

from fastapi import Header, HTTPException, status

from shopwatch.core.config import settings
from shopwatch.core.security import verify_bearer_token


'''
Guard for the ops and read endpoints.
    - OPS_API_TOKEN unset: open (local dev)
    - otherwise: Authorization: Bearer <OPS_API_TOKEN>, 401 on anything else
Merchant-facing auth (OAuth / sessions) lives outside this service.
'''
def require_ops_token(authorization: Optional[str] = Header(default=None)) -> None:
    configured = settings.OPS_API_TOKEN
    if configured is None:
        return
    if not verify_bearer_token(configured.get_secret_value(), authorization):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing token",
            headers={"WWW-Authenticate": "Bearer"},
        )
