"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends

from vss.auth import TenantAuthorizer, get_authorizer
from vss.config import Settings, get_settings
from vss.cors import OriginPolicy
from vss.db import InMemoryVssBackend, SqlVssBackend, VssBackend

logger = logging.getLogger(__name__)


def build_backend(settings: Settings) -> VssBackend:
    """Pick the storage engine named by the settings."""
    if settings.use_in_memory_backend or not settings.database_url:
        logger.warning("Using in-memory backend; data will not survive a restart")
        return InMemoryVssBackend(
            enforce_version_order=settings.enforce_version_order
        )
    return SqlVssBackend(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        enforce_version_order=settings.enforce_version_order,
    )


@lru_cache(maxsize=None)
def _backend_for(settings: Settings) -> VssBackend:
    return build_backend(settings)


def get_backend(settings: Settings = Depends(get_settings)) -> VssBackend:
    """
    Return one backend per settings object so the connection pool is shared
    across requests.
    """
    return _backend_for(settings)


def get_tenant_authorizer(
    settings: Settings = Depends(get_settings),
) -> TenantAuthorizer:
    return get_authorizer(settings.auth_key, settings.jwt_leeway_seconds)


def get_origin_policy(settings: Settings = Depends(get_settings)) -> OriginPolicy:
    return OriginPolicy.from_settings(settings)
