"""
Bearer token verification and store_id reconciliation.

Tokens are compact JWS signed with ES256K (ECDSA over secp256k1 with a
SHA-256 pre-hash). The ``sub`` claim names the store the caller may use.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

logger = logging.getLogger(__name__)

ALGORITHM = "ES256K"
REQUIRED_CLAIMS = ["sub", "exp", "nbf"]


class AuthorizationError(Exception):
    """Raised when a request cannot be tied to a store."""


def load_public_key(hex_key: str) -> ec.EllipticCurvePublicKey:
    """Parse a hex-encoded SEC1 secp256k1 point (compressed or uncompressed)."""
    try:
        encoded = bytes.fromhex(hex_key.strip())
    except ValueError as exc:
        raise ValueError("auth key must be hex encoded") from exc
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), encoded)


class TenantAuthorizer:
    """
    Verifies bearer tokens against a fixed public key.

    Without a key the authorizer is disabled and ``verify_token`` returns
    None for every request; the store_id must then come from the payload.
    """

    def __init__(
        self,
        public_key: Optional[ec.EllipticCurvePublicKey],
        leeway_seconds: int = 0,
    ):
        self.public_key = public_key
        self.leeway_seconds = leeway_seconds

    @classmethod
    def from_hex(
        cls, hex_key: Optional[str], leeway_seconds: int = 0
    ) -> "TenantAuthorizer":
        public_key = load_public_key(hex_key) if hex_key else None
        return cls(public_key, leeway_seconds=leeway_seconds)

    @property
    def enabled(self) -> bool:
        return self.public_key is not None

    def verify_token(self, token: Optional[str]) -> Optional[str]:
        """Return the store_id the token authorizes, or None when auth is off."""
        if self.public_key is None:
            return None
        if not token:
            raise AuthorizationError("missing bearer token")

        try:
            claims = jwt.decode(
                token,
                self.public_key,
                algorithms=[ALGORITHM],
                leeway=self.leeway_seconds,
                options={"require": REQUIRED_CLAIMS, "verify_aud": False},
            )
        except jwt.InvalidTokenError as exc:
            logger.error("Unauthorized: %s", exc)
            raise AuthorizationError(str(exc)) from exc

        subject = claims["sub"]
        if not isinstance(subject, str) or not subject:
            raise AuthorizationError("token subject must be a non-empty string")
        return subject


@lru_cache(maxsize=8)
def get_authorizer(hex_key: Optional[str], leeway_seconds: int = 0) -> TenantAuthorizer:
    """Cache one authorizer per configured key."""
    return TenantAuthorizer.from_hex(hex_key, leeway_seconds=leeway_seconds)


def ensure_store_id(
    payload_store_id: Optional[str], token_store_id: Optional[str]
) -> str:
    """
    Reconcile the store_id in a request body with the one from the token.

    Raises AuthorizationError on a mismatch and ValueError when neither
    side provides a store_id.
    """
    if token_store_id is not None:
        if payload_store_id is None:
            return token_store_id
        if payload_store_id != token_store_id:
            raise AuthorizationError("store_id mismatch")
        return payload_store_id

    if not payload_store_id:
        raise ValueError("store_id is required")
    return payload_store_id
