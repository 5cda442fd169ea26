# src/identity_service/dependencies/auth.py
from typing import Callable

import structlog
from fastapi import Depends, HTTPException, Request, status

from ..UAA.authorization import (
    AuthorizationFilter,
    admin_only,
    authenticated,
    set_request_claims,
    superuser_only,
)
from ..UAA.exceptions import Forbidden, Unauthorized
from ..UAA.schemas import TokenClaims
from ..UAA.services import IdentityService
from .identity import get_identity_service

logger = structlog.get_logger(__name__)


class Authorize:
    """FastAPI dependency running an ``AuthorizationFilter`` against the request."""

    def __init__(self, auth_filter: AuthorizationFilter):
        self.auth_filter = auth_filter

    async def __call__(
        self,
        request: Request,
        service: IdentityService = Depends(get_identity_service),
    ) -> TokenClaims:
        try:
            claims = self.auth_filter.authorize(request.headers.get("Authorization"), service.verify_token)
        except Unauthorized as e:
            logger.info("request_unauthorized", reason=e.message)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=e.message,
                headers={"WWW-Authenticate": "Bearer"},
            )
        except Forbidden as e:
            logger.info("request_forbidden", reason=e.message)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
        set_request_claims(request, claims)
        return claims


def require(predicate: Callable[[TokenClaims], bool], message: str) -> Authorize:
    """Authenticated plus a custom claims predicate; ``message`` is the 403 body."""
    return Authorize(authenticated.with_rule(predicate, message))


require_authenticated = Authorize(authenticated)
require_admin = Authorize(admin_only)
require_superuser = Authorize(superuser_only)
