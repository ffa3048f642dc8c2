"""JWT access token validation (ES256).

Tokens are issued by the platform's auth service; this service only
verifies them.  ``create_access_token`` signs with the local key and
exists for development and tests.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

# Dev/test: ephemeral EC key pair generated on import.
# Production: load the issuer's public key (not implemented yet).
_private_key = ec.generate_private_key(ec.SECP256R1())
_public_key = _private_key.public_key()

ALGORITHM = "ES256"
ISSUER = "auth-service"
AUDIENCE = "auth-service"
ACCESS_TOKEN_TTL_MIN = 15


def create_access_token(
    *,
    sub: str,
    scope: str = "",
    roles: list[str] | None = None,
    ttl: timedelta | None = None,
) -> str:
    """Build and sign a JWT access token (sub, iss, aud, exp, iat, jti, scope, roles)."""
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + (ttl or timedelta(minutes=ACCESS_TOKEN_TTL_MIN)),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "scope": scope,
        "roles": roles or ["student"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256; exp, iss and aud are checked by PyJWT.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
