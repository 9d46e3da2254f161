"""
FastAPI dependencies for authentication.
Verifies Firebase JWT tokens and exposes the caller's tenant and role.
"""
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from tenantpay.auth.firebase import ROLE_CLAIM, TENANT_CLAIM, verify_firebase_token

# HTTPBearer scheme for extracting Authorization header
security = HTTPBearer()

ADMIN_ROLES = ("ADMIN", "SUPER_ADMIN")


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, always bound to exactly one tenant."""
    user_id: str
    tenant_id: str
    role: str = "CUSTOMER"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """
    FastAPI dependency that verifies the Firebase JWT and returns the caller.

    The tenant comes from the token's tenant_id custom claim, never from the
    request, so a caller cannot act on another tenant's payments.

    Raises:
        HTTPException 401: If the token is missing, invalid or expired
        HTTPException 403: If the token carries no tenant
    """
    token = credentials.credentials

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        decoded_token = verify_firebase_token(token)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = decoded_token.get("uid")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing uid"
        )

    tenant_id = decoded_token.get(TENANT_CLAIM)
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not a member of any tenant"
        )

    return Principal(
        user_id=user_id,
        tenant_id=tenant_id,
        role=(decoded_token.get(ROLE_CLAIM) or "CUSTOMER").upper(),
        email=decoded_token.get("email"),
    )


def require_roles(*roles: str) -> Callable:
    """Dependency factory restricting a route to the given roles."""

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return principal

    return dependency


require_admin = require_roles(*ADMIN_ROLES)
