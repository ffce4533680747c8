"""Bearer token verification producing typed identity claims.

Tokens are HS256 JWTs issued by the identity service and carrying ``sub``,
``email``, ``iss``, ``iat`` and ``exp``.  Verification happens once, in
:class:`~tenantry_api.middleware.auth.AuthenticationMiddleware`; everything
downstream receives the frozen :class:`TokenClaims` model rather than a raw
claim mapping.  :meth:`TokenVerifier.sign` exists for tests and local
tooling.
"""

from __future__ import annotations

import logging
import time
import uuid

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "HS256"


class TokenClaims(BaseModel):
    """Validated identity assertion carried by a bearer token."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    sub: str = Field(..., min_length=1, max_length=64, description="User id.")
    email: str = Field(..., min_length=3, max_length=320)
    iss: str
    iat: int
    exp: int
    jti: str | None = None


class TokenVerifier:
    """Validate signed JWT bearer tokens.

    Parameters
    ----------
    secret:
        Shared signing secret.
    issuer:
        Expected ``iss`` claim.
    algorithm:
        JWT signing algorithm.  Only this algorithm is accepted.
    leeway_seconds:
        Clock skew tolerated when checking ``exp``.
    """

    def __init__(
        self,
        secret: SecretStr,
        *,
        issuer: str = "tenantry",
        algorithm: str = DEFAULT_ALGORITHM,
        leeway_seconds: int = 0,
    ) -> None:
        if not secret.get_secret_value():
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self._issuer = issuer
        self._algorithm = algorithm
        self._leeway = leeway_seconds

    def sign(
        self,
        sub: str,
        email: str,
        *,
        ttl_seconds: int = 3600,
        now: float | None = None,
    ) -> str:
        """Encode a token for *sub*.  Intended for tests and local tooling."""
        issued = int(time.time() if now is None else now)
        claims = {
            "sub": sub,
            "email": email,
            "iss": self._issuer,
            "iat": issued,
            "exp": issued + ttl_seconds,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secret.get_secret_value(), algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Return the claims in *token*.

        Raises
        ------
        PermissionError
            If the token is malformed, has a bad signature, names another
            issuer, lacks required claims, or has expired.  Expired tokens
            mention ``expired`` in the message.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret.get_secret_value(),
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={"require_exp": True, "require_iat": True, "leeway": self._leeway},
            )
        except ExpiredSignatureError as exc:
            raise PermissionError("Token has expired") from exc
        except JWTError as exc:
            raise PermissionError(str(exc) or "Invalid token") from exc

        try:
            return TokenClaims.model_validate(payload)
        except ValidationError as exc:
            raise PermissionError("Invalid token claims") from exc
