"""Vendor persistence contract and an in-process implementation."""
from __future__ import annotations

import threading
import uuid
from typing import Dict, List, Optional, Protocol

from ..models import Vendor


class VendorStore(Protocol):
    """Tenant-scoped vendor storage used by VendorResolver.

    ``list_vendors`` returns vendors in insertion order. ``create_vendor`` may
    raise DuplicateVendorError when the store enforces normalized-name
    uniqueness per tenant.
    """

    def list_vendors(self, tenant_id: str) -> List[Vendor]: ...

    def create_vendor(self, tenant_id: str, name: str, display_order: int) -> Vendor: ...

    def max_display_order(self, tenant_id: str) -> Optional[int]: ...


class InMemoryVendorStore:
    """Process-local store; used for development and tests."""

    def __init__(self) -> None:
        self._vendors: Dict[str, List[Vendor]] = {}
        self._lock = threading.Lock()

    def list_vendors(self, tenant_id: str) -> List[Vendor]:
        with self._lock:
            return list(self._vendors.get(tenant_id, []))

    def create_vendor(self, tenant_id: str, name: str, display_order: int) -> Vendor:
        vendor = Vendor(id=str(uuid.uuid4()), tenantId=tenant_id, name=name, displayOrder=display_order)
        with self._lock:
            self._vendors.setdefault(tenant_id, []).append(vendor)
        return vendor

    def max_display_order(self, tenant_id: str) -> Optional[int]:
        with self._lock:
            orders = [v.displayOrder for v in self._vendors.get(tenant_id, [])]
        return max(orders) if orders else None

    def clear(self) -> None:
        with self._lock:
            self._vendors.clear()
