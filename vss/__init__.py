"""
Versioned multi-tenant key-value storage service.

This package provides a FastAPI application over a pluggable storage
backend (SQL or in-memory), bearer-token tenant authorization and a
backfill worker for importing records from a legacy deployment.
"""

__version__ = "0.1.0"
