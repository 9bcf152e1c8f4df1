import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from invoice_intake.exceptions import DuplicateVendorError
from invoice_intake.models import Vendor
from invoice_intake.pipeline.vendor_resolution import VendorResolver, levenshtein, normalize_vendor_name
from invoice_intake.services.vendor_store import InMemoryVendorStore


class SlowStore(InMemoryVendorStore):
    """Widens the read/create window so unsynchronized callers would race."""

    def list_vendors(self, tenant_id):
        vendors = super().list_vendors(tenant_id)
        time.sleep(0.02)
        return vendors


class ConflictingStore(InMemoryVendorStore):
    """Behaves like a store whose uniqueness key was taken by another process."""

    def __init__(self, existing: Vendor) -> None:
        super().__init__()
        self.existing = existing

    def create_vendor(self, tenant_id, name, display_order):
        raise DuplicateVendorError(self.existing)


@pytest.fixture
def store():
    return InMemoryVendorStore()


@pytest.fixture
def resolver(store):
    return VendorResolver(store)


# --- normalization ---


def test_normalize_equivalent_spellings():
    assert normalize_vendor_name("ACME Corp.") == "acme corp"
    assert normalize_vendor_name("  acme   corp ") == "acme corp"
    assert normalize_vendor_name("ACME Corp.") == normalize_vendor_name("acme  corp")


def test_normalize_keeps_hebrew_letters():
    assert normalize_vendor_name('חברת  החשמל בע"מ') == "חברת החשמל בעמ"


@pytest.mark.parametrize(
    "name",
    ["ACME Corp.", "  Foo - Bar  ", 'חברת החשמל בע"מ', "a . b", "!!!", "", "Tab\tSeparated\nName"],
)
def test_normalize_is_idempotent(name):
    once = normalize_vendor_name(name)
    assert normalize_vendor_name(once) == once


def test_levenshtein():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("abc", "") == 3
    assert levenshtein("same", "same") == 0
    assert levenshtein("flaw", "lawn") == levenshtein("lawn", "flaw") == 2


# --- matching ---


def test_first_sighting_creates_vendor(resolver, store):
    result = resolver.match_vendor("  ACME Corp.  ", "t1")
    assert result.isNew is True
    assert result.vendorName == "ACME Corp."
    [vendor] = store.list_vendors("t1")
    assert vendor.id == result.vendorId
    assert vendor.displayOrder == 1


def test_exact_match_after_normalization(resolver):
    created = resolver.match_vendor("ACME Corp.", "t1")
    again = resolver.match_vendor("acme  corp", "t1")
    assert again.isNew is False
    assert again.vendorId == created.vendorId
    assert again.vendorName == "ACME Corp."


def test_fuzzy_match_within_distance(resolver):
    created = resolver.match_vendor("Globex Industries", "t1")
    typo = resolver.match_vendor("Gl0bex Industrie", "t1")
    assert typo.isNew is False
    assert typo.vendorId == created.vendorId


def test_distance_above_limit_creates_new(resolver, store):
    resolver.match_vendor("Initech", "t1")
    other = resolver.match_vendor("Initrade", "t1")
    assert other.isNew is True
    assert [v.displayOrder for v in store.list_vendors("t1")] == [1, 2]


def test_fuzzy_pass_takes_first_acceptable_not_closest(store):
    first = store.create_vendor("t1", "abcdef", 1)
    store.create_vendor("t1", "abcdxf", 2)
    # distance 2 to the first vendor, 1 to the second
    result = VendorResolver(store).match_vendor("abcdxy", "t1")
    assert result.vendorId == first.id


def test_exact_match_wins_over_earlier_fuzzy(store):
    store.create_vendor("t1", "acme corq", 1)
    exact = store.create_vendor("t1", "Acme Corp", 2)
    assert VendorResolver(store).match_vendor("ACME CORP", "t1").vendorId == exact.id


def test_tenants_are_isolated(resolver):
    a = resolver.match_vendor("Acme", "tenant-a")
    b = resolver.match_vendor("Acme", "tenant-b")
    assert a.isNew and b.isNew
    assert a.vendorId != b.vendorId


def test_display_order_continues_from_max(store):
    store.create_vendor("t1", "Zeta", 7)
    result = VendorResolver(store).match_vendor("Brand New Vendor", "t1")
    assert result.isNew
    assert store.list_vendors("t1")[-1].displayOrder == 8


def test_concurrent_first_sightings_create_one_vendor():
    store = SlowStore()
    resolver = VendorResolver(store)
    barrier = threading.Barrier(8)

    def worker(_):
        barrier.wait()
        return resolver.match_vendor("Umbrella Holdings", "t1")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(worker, range(8)))

    assert len(store.list_vendors("t1")) == 1
    assert sum(r.isNew for r in results) == 1
    assert len({r.vendorId for r in results}) == 1


def test_store_level_duplicate_resolves_to_existing():
    existing = Vendor(id="v-1", tenantId="t1", name="Umbrella Holdings", displayOrder=3)
    result = VendorResolver(ConflictingStore(existing)).match_vendor("Umbrella Holdings", "t1")
    assert result.isNew is False
    assert result.vendorId == "v-1"
    assert result.vendorName == "Umbrella Holdings"
