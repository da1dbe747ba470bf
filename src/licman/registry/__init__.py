"""
In-process License Registry

This package provides:
1. LicenseRegistry: lock-guarded, dict-backed store of issued licenses
2. LicenseRegistryClient: HTTP client for the license API
3. start_license_server: launches the HTTP API in a daemon thread
"""

from .license_registry import (
    License,
    LicenseAPIError,
    LicenseError,
    LicenseRegistry,
    LicenseRegistryClient,
    NotFoundError,
    ValidationError,
    ValidationOutcome,
    now_ms,
    start_license_server,
)

__all__ = [
    'License',
    'LicenseAPIError',
    'LicenseError',
    'LicenseRegistry',
    'LicenseRegistryClient',
    'NotFoundError',
    'ValidationError',
    'ValidationOutcome',
    'now_ms',
    'start_license_server',
]
