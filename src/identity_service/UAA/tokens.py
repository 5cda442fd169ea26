# src/identity_service/UAA/tokens.py
"""
Signed bearer tokens.

Tokens are compact JWS strings (``header.claims.signature``, base64url parts)
signed with HMAC-SHA256. Claims: ``sub``, ``iat``, ``exp`` and optionally
``username`` / ``is_superuser``.
"""
import json
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import jws, jwt
from jose.exceptions import JOSEError
from pydantic import ValidationError

from .exceptions import (
    BadSignature,
    MalformedToken,
    TokenExpired,
    TokenNotYetValid,
    UnsupportedAlgorithm,
)
from .schemas import TokenClaims
from .utils import to_timestamp, utcnow


ALGORITHM = "HS256"
_TIME_CLAIMS = ("iat", "exp")


def mint_token(
    claims: Dict[str, Any],
    secret: str,
    ttl: timedelta,
    now: Optional[datetime] = None,
) -> str:
    """Sign ``claims`` with ``iat``/``exp`` stamped from ``now`` and ``ttl``."""
    issued_at = to_timestamp(now or utcnow())
    payload = dict(claims)
    if "sub" in payload:
        payload["sub"] = str(payload["sub"])
    payload["iat"] = issued_at
    payload["exp"] = issued_at + int(ttl.total_seconds())
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def parse_token(
    token: str,
    secret: str,
    now: Optional[datetime] = None,
    leeway: int = 0,
) -> TokenClaims:
    """
    Verify ``token`` and return its claims.

    ``leeway`` tolerates clock skew on ``iat`` only; expiry is never extended.

    Raises one of ``MalformedToken``, ``UnsupportedAlgorithm``, ``BadSignature``,
    ``TokenNotYetValid`` or ``TokenExpired``.
    """
    if not token or token.count(".") != 2:
        raise MalformedToken("token must have three parts")

    try:
        header = jws.get_unverified_header(token)
    except JOSEError as e:
        raise MalformedToken(str(e)) from e

    alg = header.get("alg")
    if alg != ALGORITHM:
        raise UnsupportedAlgorithm(f"unsupported signing algorithm: {alg!r}")

    try:
        raw = jws.verify(token, secret, algorithms=[ALGORITHM])
    except JOSEError as e:
        raise BadSignature("signature verification failed") from e

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedToken("claims are not valid JSON") from e
    if not isinstance(payload, dict):
        raise MalformedToken("claims must be a JSON object")

    for name in _TIME_CLAIMS:
        value = payload.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MalformedToken(f"missing or non-numeric '{name}' claim")

    current = to_timestamp(now or utcnow())
    if current < payload["iat"] - leeway:
        raise TokenNotYetValid("token issued in the future")
    if current >= payload["exp"]:
        raise TokenExpired("token expired")

    try:
        return TokenClaims.model_validate(payload)
    except ValidationError as e:
        raise MalformedToken("claims do not match the expected shape") from e
