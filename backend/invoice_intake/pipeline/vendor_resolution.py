"""Resolve a free-text vendor name to a canonical tenant-scoped vendor.

Strategy: exact match on the normalized name, then the first vendor (in
stored order) within the fuzzy edit-distance limit, then create. The fuzzy
pass is "first acceptable", not "closest": ties and near-ties resolve by list
order.

Creation is serialized per tenant. Under the tenant lock the vendor list is
read again and both passes are repeated, so concurrent sightings of the same
new name create exactly one vendor.
"""
from __future__ import annotations

import logging
import re
import threading
from typing import Dict, List, Optional

from ..config import get_settings
from ..exceptions import DuplicateVendorError
from ..models import MatchResult, Vendor
from ..services.vendor_store import VendorStore

logger = logging.getLogger(__name__)

# Keep Latin letters, digits, whitespace and the Hebrew block (U+0590-U+05FF)
_STRIP_RE = re.compile(r"[^\u0590-\u05FFa-z0-9\s]")
_SPACE_RE = re.compile(r"\s+")


def normalize_vendor_name(name: str) -> str:
    """Lowercase, drop punctuation/symbols, collapse whitespace. Idempotent."""
    lowered = (name or "").lower()
    stripped = _STRIP_RE.sub("", lowered)
    return _SPACE_RE.sub(" ", stripped).strip()


def levenshtein(a: str, b: str) -> int:
    """Minimum single-character insertions, deletions and substitutions."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j - 1] + cost,  # substitution
                current[j - 1] + 1,  # insertion
                previous[j] + 1,  # deletion
            ))
        previous = current
    return previous[-1]


class VendorResolver:
    def __init__(self, store: VendorStore, max_distance: Optional[int] = None) -> None:
        self.store = store
        self.max_distance = get_settings().VENDOR_FUZZY_MAX_DISTANCE if max_distance is None else max_distance
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _tenant_lock(self, tenant_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(tenant_id, threading.Lock())

    def find_match(self, normalized: str, vendors: List[Vendor]) -> Optional[Vendor]:
        for vendor in vendors:
            if normalize_vendor_name(vendor.name) == normalized:
                logger.info("Exact match found for vendor: %s", vendor.name)
                return vendor
        for vendor in vendors:
            distance = levenshtein(normalized, normalize_vendor_name(vendor.name))
            if distance <= self.max_distance:
                logger.info("Fuzzy match found for vendor: %s (distance: %d)", vendor.name, distance)
                return vendor
        return None

    def match_vendor(self, candidate_name: str, tenant_id: str) -> MatchResult:
        normalized = normalize_vendor_name(candidate_name)

        found = self.find_match(normalized, self.store.list_vendors(tenant_id))
        if found:
            return MatchResult(vendorId=found.id, vendorName=found.name, isNew=False)

        with self._tenant_lock(tenant_id):
            # Another request may have created it while we were scanning
            found = self.find_match(normalized, self.store.list_vendors(tenant_id))
            if found:
                return MatchResult(vendorId=found.id, vendorName=found.name, isNew=False)

            display_order = (self.store.max_display_order(tenant_id) or 0) + 1
            # Store the name as extracted, not the normalized form
            name = (candidate_name or "").strip()
            try:
                vendor = self.store.create_vendor(tenant_id, name, display_order)
            except DuplicateVendorError as dup:
                logger.info("Vendor created concurrently elsewhere: %s", dup.existing.name)
                return MatchResult(vendorId=dup.existing.id, vendorName=dup.existing.name, isNew=False)

        logger.info("Created new vendor %r for tenant %s (displayOrder=%d)", vendor.name, tenant_id, display_order)
        return MatchResult(vendorId=vendor.id, vendorName=vendor.name, isNew=True)
