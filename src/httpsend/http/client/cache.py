import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from httpsend.http.client.descriptor import RequestDescriptor
from httpsend.http.client.response import ResponseRecord
from httpsend.settings import SETTINGS
from httpsend.util.logging import get_logger

log = get_logger(__name__)


def canonical_key(descriptor: RequestDescriptor) -> str:
    """
    Digest of the identity-relevant request fields.

    Headers are sorted so insertion order never changes the key; the body is
    hashed as sent on the wire. The forced decode flags and the redirect flag
    are part of the key because they change the cached record: its decoded
    body, and whether a 3xx was followed or returned as is.
    """
    ident = {
        "method": descriptor.method,
        "url": descriptor.url,
        "headers": sorted(descriptor.headers.items()),
        "body": hashlib.sha256(descriptor.body).hexdigest() if descriptor.body is not None else None,
        "decode": [descriptor.force_json_decode, descriptor.force_yaml_decode],
        "redirect": descriptor.enable_redirect,
    }
    payload = json.dumps(ident, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _cache_control(record: ResponseRecord) -> dict[str, str | None]:
    directives = {}
    for part in record.headers.get("cache-control", "").split(","):
        name, _, value = part.strip().partition("=")
        if name:
            directives[name.lower()] = value.strip('"') or None
    return directives


@dataclass
class CacheEntry:
    record: ResponseRecord
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class ResponseCache:
    """
    In-memory response cache keyed by `canonical_key`.

    Only map access happens under the lock; callers do their network I/O
    outside of it. Expired entries are evicted when read, and the oldest
    entry is evicted once `max_entries` is reached.
    """

    def __init__(
        self,
        expire_after: timedelta | float | None = None,
        max_entries: int | None = None,
        allowed_codes: tuple[int, ...] | None = None,
        cache_control: bool | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = SETTINGS.http.client.cache
        expire_after = settings.expire_after if expire_after is None else expire_after
        if isinstance(expire_after, timedelta):
            expire_after = expire_after.total_seconds()
        self.expire_after = float(expire_after)
        self.max_entries = settings.max_entries if max_entries is None else max_entries
        self.allowed_codes = frozenset(
            settings.allowed_codes if allowed_codes is None else allowed_codes
        )
        self.cache_control = settings.cache_control if cache_control is None else cache_control
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def lookup(self, descriptor: RequestDescriptor) -> ResponseRecord | None:
        if not descriptor.cache:
            return None

        key = canonical_key(descriptor)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(now):
                del self._entries[key]
                log.debug("cache entry expired", extra={"url": descriptor.url})
                return None
            return entry.record

    def ttl_for(self, descriptor: RequestDescriptor, record: ResponseRecord) -> float | None:
        """
        Freshness lifetime for `record`, or None when it must not be cached.
        """
        if record.error is not None:
            return None
        if descriptor.force_cache:
            return float(descriptor.force_cache_duration_seconds)
        if record.status_code not in self.allowed_codes:
            return None
        if not self.cache_control:
            return self.expire_after

        directives = _cache_control(record)
        if "no-store" in directives or "no-cache" in directives:
            return None
        max_age = directives.get("max-age")
        if max_age is not None:
            try:
                return float(max(0, int(max_age)))
            except ValueError:
                return None
        return self.expire_after

    def store(
        self,
        descriptor: RequestDescriptor,
        record: ResponseRecord,
        ttl: float | None = None,
    ) -> bool:
        """
        Insert or replace the entry for `descriptor`. Returns whether it was stored.
        """
        if not descriptor.cache or record.error is not None:
            return False
        if ttl is None:
            ttl = self.ttl_for(descriptor, record)
        if not ttl:
            return False

        key = canonical_key(descriptor)
        entry = CacheEntry(record=record, inserted_at=self._clock(), ttl=ttl)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            while self.max_entries and len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        log.debug("cached response", extra={"url": descriptor.url, "ttl": ttl})
        return True

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
