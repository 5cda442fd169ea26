# src/identity_service/UAA/authorization.py
"""
Request-time authorization over bearer tokens.

The filter never touches the store: a protected request costs one HMAC
verification plus whatever claim rules the route adds.
"""
from typing import Any, Callable, NamedTuple, Optional, Sequence

from .exceptions import Forbidden, TokenInvalid, UnauthenticatedAccess, Unauthorized
from .schemas import TokenClaims

BEARER_SCHEME = "Bearer"

MISSING_HEADER = "Authorization header is required"
MALFORMED_HEADER = "Authorization header format must be Bearer <token>"
INVALID_TOKEN = "Invalid or expired token"
ADMIN_REQUIRED = "Admin access required"
SUPERUSER_REQUIRED = "Superuser access required"

# request.state attribute holding verified claims
CLAIMS_STATE_KEY = "identity_service_token_claims"


class ClaimsRule(NamedTuple):
    predicate: Callable[[TokenClaims], bool]
    message: str


def is_superuser(claims: TokenClaims) -> bool:
    return bool(claims.is_superuser)


def extract_bearer_token(header_value: Optional[str]) -> str:
    if not header_value:
        raise Unauthorized(MISSING_HEADER)
    parts = header_value.split()
    if len(parts) != 2 or parts[0] != BEARER_SCHEME:
        raise Unauthorized(MALFORMED_HEADER)
    return parts[1]


class AuthorizationFilter:
    """
    An ordered chain of claim rules behind token verification.

    Built once when routes are wired; ``authorize`` walks the chain linearly.
    """

    def __init__(self, rules: Sequence[ClaimsRule] = ()):
        self.rules = tuple(rules)

    def with_rule(self, predicate: Callable[[TokenClaims], bool], message: str) -> "AuthorizationFilter":
        return AuthorizationFilter(self.rules + (ClaimsRule(predicate, message),))

    def authorize(self, header_value: Optional[str], verify: Callable[[str], TokenClaims]) -> TokenClaims:
        token = extract_bearer_token(header_value)
        try:
            claims = verify(token)
        except TokenInvalid as e:
            raise Unauthorized(INVALID_TOKEN) from e
        for rule in self.rules:
            if not rule.predicate(claims):
                raise Forbidden(rule.message)
        return claims


authenticated = AuthorizationFilter()
admin_only = authenticated.with_rule(is_superuser, ADMIN_REQUIRED)
superuser_only = authenticated.with_rule(is_superuser, SUPERUSER_REQUIRED)


# --- per-request context slot ---
def set_request_claims(request: Any, claims: TokenClaims) -> None:
    setattr(request.state, CLAIMS_STATE_KEY, claims)


def get_request_claims(request: Any) -> TokenClaims:
    claims = getattr(request.state, CLAIMS_STATE_KEY, None)
    if not isinstance(claims, TokenClaims):
        raise UnauthenticatedAccess()
    return claims


def is_authenticated(request: Any) -> bool:
    try:
        get_request_claims(request)
    except UnauthenticatedAccess:
        return False
    return True
