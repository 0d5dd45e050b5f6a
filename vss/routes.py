"""
HTTP routes for the storage service.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Response,
)
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from vss import __version__
from vss.auth import AuthorizationError, TenantAuthorizer, ensure_store_id
from vss.config import Settings, get_settings
from vss.cors import OriginPolicy, OriginRejected, create_cors_headers, validate_origin
from vss.db import BackendError, VssBackend
from vss.dependencies import get_backend, get_origin_policy, get_tenant_authorizer
from vss.kv import KeyValue, KeyValueOld
from vss.migration import run_migration_task
from vss.schemas import (
    DeleteObjectRequest,
    GetObjectRequest,
    HealthResponse,
    KeyVersion,
    ListKeyVersionsRequest,
    PutObjectsRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class RequestContext:
    headers: dict[str, str]
    token_store_id: Optional[str]

    def resolve_store_id(self, payload_store_id: Optional[str]) -> str:
        try:
            return ensure_store_id(payload_store_id, self.token_store_id)
        except AuthorizationError as exc:
            raise HTTPException(
                status_code=401, detail=f"Unauthorized: {exc}", headers=self.headers
            ) from exc
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail=str(exc), headers=self.headers
            ) from exc


def get_cors_headers(
    origin: Optional[str] = Header(default=None),
    policy: OriginPolicy = Depends(get_origin_policy),
) -> dict[str, str]:
    try:
        allow_origin = validate_origin(origin, policy)
    except OriginRejected:
        logger.debug("Rejected request from origin %s", origin)
        raise HTTPException(
            status_code=404, detail="", headers=create_cors_headers("*")
        )
    return create_cors_headers(allow_origin)


def get_request_context(
    response: Response,
    headers: dict[str, str] = Depends(get_cors_headers),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    authorizer: TenantAuthorizer = Depends(get_tenant_authorizer),
) -> RequestContext:
    response.headers.update(headers)
    token = credentials.credentials if credentials else None
    try:
        token_store_id = authorizer.verify_token(token)
    except AuthorizationError as exc:
        raise HTTPException(
            status_code=401, detail=f"Unauthorized: {exc}", headers=headers
        ) from exc
    return RequestContext(headers=headers, token_store_id=token_store_id)


def _backend_error(exc: BackendError, headers: dict[str, str]) -> HTTPException:
    logger.error("Error: %s", exc, exc_info=exc)
    return HTTPException(status_code=400, detail=str(exc), headers=headers)


def _get_object(
    payload: GetObjectRequest, ctx: RequestContext, backend: VssBackend
) -> Optional[KeyValue]:
    store_id = ctx.resolve_store_id(payload.store_id)
    try:
        item = backend.get_item(store_id, payload.key)
    except BackendError as exc:
        raise _backend_error(exc, ctx.headers) from exc
    return item.into_kv() if item else None


@router.get("/health-check", response_model=HealthResponse)
def health_check():
    return HealthResponse(status="ok", version=__version__)


@router.post("/getObject", response_model=Optional[KeyValueOld])
def get_object(
    payload: GetObjectRequest,
    ctx: RequestContext = Depends(get_request_context),
    backend: VssBackend = Depends(get_backend),
):
    """Legacy variant: the value is returned as a base64 string."""
    logger.debug("get_object: store=%s key=%s", payload.store_id, payload.key)
    kv = _get_object(payload, ctx, backend)
    return KeyValueOld.from_kv(kv) if kv else None


@router.post("/v2/getObject", response_model=Optional[KeyValue])
def get_object_v2(
    payload: GetObjectRequest,
    ctx: RequestContext = Depends(get_request_context),
    backend: VssBackend = Depends(get_backend),
):
    logger.debug("get_object v2: store=%s key=%s", payload.store_id, payload.key)
    return _get_object(payload, ctx, backend)


@router.put("/putObjects")
@router.put("/v2/putObjects")
def put_objects(
    payload: PutObjectsRequest,
    ctx: RequestContext = Depends(get_request_context),
    backend: VssBackend = Depends(get_backend),
):
    store_id = ctx.resolve_store_id(payload.store_id)
    if not payload.transaction_items:
        return None

    logger.debug(
        "put_objects: store=%s items=%d", store_id, len(payload.transaction_items)
    )
    try:
        backend.put_items_in_store(store_id, payload.transaction_items)
    except BackendError as exc:
        raise _backend_error(exc, ctx.headers) from exc
    return None


@router.post("/listKeyVersions", response_model=list[KeyVersion])
@router.post("/v2/listKeyVersions", response_model=list[KeyVersion])
def list_key_versions(
    payload: ListKeyVersionsRequest,
    ctx: RequestContext = Depends(get_request_context),
    backend: VssBackend = Depends(get_backend),
):
    store_id = ctx.resolve_store_id(payload.store_id)
    try:
        versions = backend.list_key_versions(store_id, payload.key_prefix)
    except BackendError as exc:
        raise _backend_error(exc, ctx.headers) from exc
    return [KeyVersion(key=key, version=version) for key, version in versions]


@router.post("/v2/deleteObject")
def delete_object(
    payload: DeleteObjectRequest,
    ctx: RequestContext = Depends(get_request_context),
    backend: VssBackend = Depends(get_backend),
):
    """Tombstone a key. Stale versions are ignored like stale writes."""
    store_id = ctx.resolve_store_id(payload.store_id)
    try:
        backend.delete_item(store_id, payload.key, payload.version)
    except BackendError as exc:
        raise _backend_error(exc, ctx.headers) from exc
    return None


@router.get("/migration")
def migration(
    background_tasks: BackgroundTasks,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
    backend: VssBackend = Depends(get_backend),
):
    """
    Kick off a backfill from the legacy deployment and return immediately.
    Progress and failures are only reported in the logs.
    """
    if not settings.admin_key:
        raise HTTPException(status_code=500, detail="ADMIN_KEY not set")

    token = credentials.credentials if credentials else ""
    if not hmac.compare_digest(
        token.encode("utf-8"), settings.admin_key.encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")

    background_tasks.add_task(run_migration_task, backend, settings)
    return None


@router.options("/{path:path}")
def preflight(path: str, headers: dict[str, str] = Depends(get_cors_headers)):
    return Response(status_code=200, headers=headers)
