"""
Origin allow-list checks and CORS response headers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from vss.config import Settings

ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"


class OriginRejected(Exception):
    """The request origin is not on the allow-list."""


@dataclass(frozen=True)
class OriginPolicy:
    allowed_origins: tuple[str, ...]
    allowed_subdomain: str
    allowed_localhost: str
    self_hosted: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "OriginPolicy":
        return cls(
            allowed_origins=tuple(settings.allowed_origins),
            allowed_subdomain=settings.allowed_subdomain,
            allowed_localhost=settings.allowed_localhost,
            self_hosted=settings.self_hosted,
        )

    def is_allowed(self, origin: str) -> bool:
        return (
            origin in self.allowed_origins
            or origin.endswith(self.allowed_subdomain)
            or origin.startswith(self.allowed_localhost)
        )


def validate_origin(origin: Optional[str], policy: OriginPolicy) -> str:
    """
    Return the value to echo in Access-Control-Allow-Origin.

    Requests without an origin (or with the opaque "null" origin) are
    treated as same-origin.
    """
    if not origin or origin == "null":
        return "*"
    if policy.self_hosted or policy.is_allowed(origin):
        return origin
    raise OriginRejected(origin)


def create_cors_headers(origin: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": "*",
    }
