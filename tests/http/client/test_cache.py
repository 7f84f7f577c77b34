import threading
from datetime import timedelta

import pytest

from httpsend.http.client.cache import ResponseCache, canonical_key
from httpsend.http.client.descriptor import validate_descriptor
from httpsend.http.client.response import ResponseRecord


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _descriptor(**overrides):
    raw = {"method": "GET", "url": "http://example.com/data", "cache": True}
    raw.update(overrides)
    return validate_descriptor(raw)


def _record(status=200, headers=None, body=b"{}"):
    return ResponseRecord.from_exchange(status, headers or {}, body)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(expire_after=timedelta(seconds=60), clock=clock)


# ---------------------------------------------------------------------------
# Canonical keys
# ---------------------------------------------------------------------------

def test_key_ignores_header_order_and_case():
    a = _descriptor(headers={"A": "1", "b": "2"})
    b = _descriptor(headers={"B": "2", "a": "1"})
    assert canonical_key(a) == canonical_key(b)


def test_key_ignores_structured_body_key_order():
    a = _descriptor(method="POST", body={"x": 1, "y": 2})
    b = _descriptor(method="POST", body={"y": 2, "x": 1})
    assert canonical_key(a) == canonical_key(b)


@pytest.mark.parametrize(
    "other",
    [
        {"method": "POST"},
        {"url": "http://example.com/other"},
        {"headers": {"x": "1"}},
        {"raw_body": "payload"},
        {"force_json_decode": True},
        {"enable_redirect": True},
    ],
)
def test_key_changes_with_identity_fields(other):
    assert canonical_key(_descriptor()) != canonical_key(_descriptor(**other))


def test_key_ignores_non_identity_flags():
    assert canonical_key(_descriptor()) == canonical_key(
        _descriptor(max_retry_attempts=3, timeout="2s", raise_error=False)
    )


# ---------------------------------------------------------------------------
# Lookup / store
# ---------------------------------------------------------------------------

def test_store_then_lookup(cache):
    d = _descriptor()
    record = _record()
    assert cache.store(d, record)
    assert cache.lookup(d) is record


def test_opt_out_descriptor_never_touches_cache(cache):
    d = _descriptor(cache=False)
    assert not cache.store(d, _record())
    assert len(cache) == 0
    assert cache.lookup(d) is None


def test_lookup_requires_cache_flag(cache):
    cache.store(_descriptor(), _record())
    assert cache.lookup(_descriptor(cache=False)) is None


def test_entry_expires_on_read(cache, clock):
    d = _descriptor()
    cache.store(d, _record())

    clock.now += 59
    assert cache.lookup(d) is not None

    clock.now += 1
    assert cache.lookup(d) is None
    assert len(cache) == 0


def test_last_writer_wins(cache):
    d = _descriptor()
    first, second = _record(body=b"1"), _record(body=b"2")
    cache.store(d, first)
    cache.store(d, second)
    assert cache.lookup(d) is second
    assert len(cache) == 1


def test_error_records_are_not_stored(cache):
    d = _descriptor()
    assert not cache.store(d, ResponseRecord.from_error({"code": "x", "message": "y"}))
    assert cache.lookup(d) is None


def test_max_entries_evicts_oldest(clock):
    cache = ResponseCache(expire_after=60, max_entries=2, clock=clock)
    d1, d2, d3 = (_descriptor(url=f"http://example.com/{i}") for i in range(3))
    for d in (d1, d2, d3):
        cache.store(d, _record())

    assert cache.lookup(d1) is None
    assert cache.lookup(d2) is not None
    assert cache.lookup(d3) is not None


def test_purge_expired(cache, clock):
    cache.store(_descriptor(url="http://example.com/a"), _record())
    clock.now += 30
    cache.store(_descriptor(url="http://example.com/b"), _record())
    clock.now += 40

    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_concurrent_stores_do_not_corrupt_map(clock):
    cache = ResponseCache(expire_after=60, max_entries=50, clock=clock)
    descriptors = [_descriptor(url=f"http://example.com/{i}") for i in range(200)]

    def writer(chunk):
        for d in chunk:
            cache.store(d, _record())
            cache.lookup(d)

    threads = [threading.Thread(target=writer, args=(descriptors[i::4],)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 50


# ---------------------------------------------------------------------------
# Freshness
# ---------------------------------------------------------------------------

def test_ttl_defaults_to_expire_after(cache):
    assert cache.ttl_for(_descriptor(), _record()) == 60


def test_ttl_honours_max_age(cache):
    record = _record(headers={"Cache-Control": "public, max-age=10"})
    assert cache.ttl_for(_descriptor(), record) == 10


@pytest.mark.parametrize("directive", ["no-store", "no-cache", "max-age=0"])
def test_uncacheable_directives(cache, directive):
    d = _descriptor()
    record = _record(headers={"Cache-Control": directive})
    assert not cache.store(d, record)
    assert cache.lookup(d) is None


def test_status_must_be_cacheable(cache):
    assert cache.ttl_for(_descriptor(), _record(status=500)) is None


def test_force_cache_overrides_headers_and_status(cache):
    d = _descriptor(force_cache=True, force_cache_duration_seconds=5)
    record = _record(status=500, headers={"Cache-Control": "no-store"})
    assert cache.ttl_for(d, record) == 5
    assert cache.store(d, record)
