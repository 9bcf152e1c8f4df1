"""FastAPI dependencies (tenant header parsing, service wiring)."""
from __future__ import annotations

import re
from functools import lru_cache

from fastapi import Header, HTTPException

from .config import get_settings
from .pipeline.vendor_resolution import VendorResolver
from .services.orchestration.intake_pipeline import IntakePipelineService
from .services.vendor_store import InMemoryVendorStore, VendorStore

_TENANT_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def get_tenant_id(x_tenant_id: str | None = Header(default=None, alias="X-Tenant-Id")) -> str:
    """Validate and return the tenant ID from the `X-Tenant-Id` header.

    Tenant IDs are also Firestore document IDs, so only a conservative
    character set is accepted. Missing/invalid is a 400.
    """
    if not x_tenant_id or not _TENANT_RE.match(x_tenant_id):
        raise HTTPException(status_code=400, detail="Missing or invalid X-Tenant-Id header")
    return x_tenant_id


@lru_cache(maxsize=1)
def get_vendor_store() -> VendorStore:
    settings = get_settings()
    if settings.VENDOR_STORE == "firestore":
        from .services.firestore import FirestoreVendorStore

        return FirestoreVendorStore()
    return InMemoryVendorStore()


@lru_cache(maxsize=1)
def get_intake_pipeline() -> IntakePipelineService:
    """Process-wide pipeline; the resolver's tenant locks must be shared."""
    from .services.vision import VisionService

    vision = VisionService()
    return IntakePipelineService(
        resolver=VendorResolver(get_vendor_store()),
        ocr=vision.ocr_image,
    )
