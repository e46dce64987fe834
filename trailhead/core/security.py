"""
Security utilities for authentication and authorization
Bearer tokens are issued by the external identity provider; this module
only verifies them and exposes the caller identity to the routes.
"""

from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings
from .exceptions import UnauthorizedException, ForbiddenException

ADMIN_ROLE = "ADMIN"

# Security scheme
security = HTTPBearer(auto_error=False)

class SecurityUtils:
    """Security utility functions"""
    
    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """Decode and validate JWT token"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            raise UnauthorizedException("Invalid authentication credentials")

def is_admin(identity: Dict[str, Any]) -> bool:
    """Administrators bypass booking ownership checks"""
    return (identity.get("role") or "").upper() == ADMIN_ROLE

# Dependency to get current user from token
async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Dict[str, Any]:
    """Extract and validate caller identity from JWT token"""
    if credentials is None:
        raise UnauthorizedException("Authentication required")
    
    payload = SecurityUtils.decode_token(credentials.credentials)
    
    if payload.get("type") != "access":
        raise UnauthorizedException("Invalid token type")
    
    if not payload.get("sub"):
        raise UnauthorizedException("Token has no subject")
    
    request.state.user_id = str(payload["sub"])

    return {
        "id": str(payload["sub"]),
        "role": (payload.get("role") or "USER").upper(),
        "email": payload.get("email"),
    }

# Role-based access control
def require_role(allowed_roles: list[str]):
    """Dependency factory checking the caller's role"""
    async def role_checker(current_user: dict = Depends(get_current_user)):
        if current_user.get("role") not in allowed_roles:
            raise ForbiddenException("Insufficient permissions")
        return current_user
    return role_checker

require_admin = require_role([ADMIN_ROLE])
