"""Firestore-backed vendor store.

Layout:
- ``tenants/{tenantId}/vendors/{vendorId}``: vendor documents
- ``tenants/{tenantId}/vendor_keys/{sha1(normalizedName)}``: uniqueness keys

Vendor creation writes the vendor and its key in one transaction, so at most
one vendor exists per (tenantId, normalizedName) even across processes.
"""
from __future__ import annotations

import hashlib
import uuid
from typing import List, Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import firestore

from ..config import get_settings
from ..exceptions import DuplicateVendorError, ExternalServiceError
from ..models import Vendor
from ..pipeline.vendor_resolution import normalize_vendor_name


def _vendor_key(name: str) -> str:
    return hashlib.sha1(normalize_vendor_name(name).encode("utf-8")).hexdigest()


def _to_vendor(doc_id: str, data: dict) -> Vendor:
    return Vendor(
        id=doc_id,
        tenantId=data.get("tenantId", ""),
        name=data.get("name", ""),
        displayOrder=int(data.get("displayOrder") or 0),
    )


class FirestoreVendorStore:
    """Thin wrapper around Firestore client for vendor operations."""

    def __init__(self, client: Optional[firestore.Client] = None) -> None:
        settings = get_settings()
        if client is not None:
            self.client = client
        # Use explicit database if provided in env, else default
        elif settings.FIRESTORE_DATABASE_ID:
            self.client = firestore.Client(
                project=settings.GCP_PROJECT or None,
                database=settings.FIRESTORE_DATABASE_ID,
            )
        else:
            self.client = firestore.Client()
        self._tenants = self.client.collection("tenants")

    def _vendors(self, tenant_id: str):
        return self._tenants.document(tenant_id).collection("vendors")

    def _keys(self, tenant_id: str):
        return self._tenants.document(tenant_id).collection("vendor_keys")

    def list_vendors(self, tenant_id: str) -> List[Vendor]:
        # createdAt preserves insertion order for the first-acceptable fuzzy pass
        try:
            q = self._vendors(tenant_id).order_by("createdAt")
            return [_to_vendor(doc.id, doc.to_dict() or {}) for doc in q.stream()]
        except GoogleAPIError as exc:
            raise ExternalServiceError(f"Vendor store read failed: {exc}") from exc

    def max_display_order(self, tenant_id: str) -> Optional[int]:
        try:
            q = self._vendors(tenant_id).order_by("displayOrder", direction=firestore.Query.DESCENDING).limit(1)
            docs = list(q.stream())
        except GoogleAPIError as exc:
            raise ExternalServiceError(f"Vendor store read failed: {exc}") from exc
        if not docs:
            return None
        return int((docs[0].to_dict() or {}).get("displayOrder") or 0)

    def create_vendor(self, tenant_id: str, name: str, display_order: int) -> Vendor:
        """Create the vendor unless its normalized name is already taken.

        Raises DuplicateVendorError carrying the existing vendor on conflict.
        """
        key_ref = self._keys(tenant_id).document(_vendor_key(name))
        vendor_ref = self._vendors(tenant_id).document(str(uuid.uuid4()))

        @firestore.transactional
        def txn_fn(tx: firestore.Transaction) -> Optional[str]:
            key_snap = key_ref.get(transaction=tx)
            if key_snap.exists:
                return (key_snap.to_dict() or {}).get("vendorId")
            tx.set(
                vendor_ref,
                {
                    "tenantId": tenant_id,
                    "name": name,
                    "normalizedName": normalize_vendor_name(name),
                    "displayOrder": display_order,
                    "createdAt": firestore.SERVER_TIMESTAMP,
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                },
            )
            tx.set(key_ref, {"vendorId": vendor_ref.id, "createdAt": firestore.SERVER_TIMESTAMP})
            return None

        try:
            existing_id = txn_fn(self.client.transaction())
            if existing_id:
                snap = self._vendors(tenant_id).document(existing_id).get()
                raise DuplicateVendorError(_to_vendor(snap.id, snap.to_dict() or {}))
        except GoogleAPIError as exc:
            raise ExternalServiceError(f"Vendor store write failed: {exc}") from exc

        return Vendor(id=vendor_ref.id, tenantId=tenant_id, name=name, displayOrder=display_order)
