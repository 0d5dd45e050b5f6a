"""
Pydantic schemas for request and response bodies.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from vss.kv import INT64_MAX, INT64_MIN, KeyValue


class GetObjectRequest(BaseModel):
    store_id: Optional[str] = None
    key: str = Field(..., min_length=1)


class PutObjectsRequest(BaseModel):
    store_id: Optional[str] = None
    global_version: Optional[int] = Field(default=None, ge=0)
    transaction_items: list[KeyValue]


class ListKeyVersionsRequest(BaseModel):
    store_id: Optional[str] = None
    key_prefix: Optional[str] = None
    # Accepted for compatibility; results are not paginated.
    page_size: Optional[int] = None
    page_token: Optional[str] = None


class KeyVersion(BaseModel):
    key: str
    version: int


class DeleteObjectRequest(BaseModel):
    store_id: Optional[str] = None
    key: str = Field(..., min_length=1)
    version: int = Field(..., ge=INT64_MIN, le=INT64_MAX)


class HealthResponse(BaseModel):
    status: str
    version: str
