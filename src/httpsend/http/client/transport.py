import asyncio
import ssl
from collections import Counter
from socket import gaierror
from urllib.parse import urlsplit

import aiohttp

from httpsend.core.errors import TransportError
from httpsend.core.models import AttemptContext
from httpsend.http.client.descriptor import TLSOptions
from httpsend.http.client.response import ResponseRecord
from httpsend.http.stats import TransportStats, build_trace_config
from httpsend.settings import SETTINGS
from httpsend.util.logging import get_logger

log = get_logger(__name__)


def build_ssl_context(tls: TLSOptions) -> ssl.SSLContext | bool:
    if tls.insecure_skip_verify:
        return False
    context = ssl.create_default_context(cafile=tls.ca_cert_file, cadata=tls.ca_cert)
    if tls.use_system_cert and (tls.ca_cert_file or tls.ca_cert):
        context.load_default_certs()
    return context


class Transport:
    """
    Performs single HTTP round-trips for the dispatcher.

    Redirects are never followed here. Used as an async context manager the
    transport keeps one pooled session; otherwise every attempt opens and
    closes its own.
    """
    def __init__(
        self,
        concurrency: int | None = None,
        per_host: int | None = None,
        timeout: float | None = None,
        *,
        headers: dict | None = None,
    ):
        settings = SETTINGS.http.client.transport
        self.concurrency = concurrency or settings.concurrency
        self.per_host = per_host or settings.per_host
        self.timeout = timeout or settings.timeout
        # merge headers
        self._headers = {
            k.lower(): v for k, v in ((settings.headers or {}) | (headers or {})).items()
        }

        self._sem_global = asyncio.Semaphore(self.concurrency)
        # per-host semaphores live only while a request to that host is in flight or waiting
        self._sem_host: dict[str, asyncio.Semaphore] = {}
        self._host_refs: Counter[str] = Counter()

        self._session: aiohttp.ClientSession | None = None
        self.stats = TransportStats()

    def build_session(self) -> aiohttp.ClientSession:
        trace_config = build_trace_config(self.stats)
        # Need to build the connector as late as possible as it requires the loop
        connector = aiohttp.TCPConnector(limit=self.concurrency * 2, ttl_dns_cache=300)
        return aiohttp.ClientSession(
            connector=connector,
            trace_configs=[trace_config],
        )

    async def __aenter__(self):
        if self._session is None:
            self._session = self.build_session()
        return self

    async def __aexit__(self, *_):
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def attempt(self, ctx: AttemptContext) -> ResponseRecord:
        """
        Perform one round-trip for `ctx`.

        Any completed exchange is returned, whatever its status code.

        Raises:
            TransportError: retryable for timeouts and connection/DNS
                failures, not retryable for malformed responses and
                configuration problems.
        """
        host = urlsplit(ctx.url).hostname or ""
        sem_host = self._sem_host.setdefault(host, asyncio.Semaphore(self.per_host))
        self._host_refs[host] += 1
        try:
            async with self._sem_global, sem_host:
                if self._session is not None:
                    return await self._exchange(self._session, ctx)
                # Fallback: ephemeral session for one-off dispatches
                async with self.build_session() as session:
                    return await self._exchange(session, ctx)
        finally:
            self._host_refs[host] -= 1
            if not self._host_refs[host]:
                del self._host_refs[host]
                del self._sem_host[host]

    async def _exchange(self, session: aiohttp.ClientSession, ctx: AttemptContext) -> ResponseRecord:
        timeout = aiohttp.ClientTimeout(total=ctx.descriptor.timeout or self.timeout)
        kwargs = {}
        try:
            if ctx.descriptor.tls is not None:
                kwargs["ssl"] = build_ssl_context(ctx.descriptor.tls)

            async with session.request(
                ctx.method,
                ctx.url,
                headers=self._headers | dict(ctx.headers),
                data=ctx.body,
                timeout=timeout,
                allow_redirects=False,
                **kwargs,
            ) as resp:
                body = await resp.read()
                return ResponseRecord.from_exchange(
                    resp.status,
                    resp.headers,
                    body,
                    url=ctx.url,
                    reason=resp.reason,
                )

        except asyncio.CancelledError:
            log.debug("cancelled error", extra={"url": ctx.url, "method": ctx.method})
            raise

        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"request timed out after {timeout.total}s", retryable=True, url=ctx.url
            ) from exc

        except aiohttp.ClientSSLError as exc:
            raise TransportError(f"tls error: {exc}", retryable=False, url=ctx.url) from exc

        except (aiohttp.ClientConnectionError, gaierror, ConnectionError) as exc:
            log.warning("connection error", extra={"url": ctx.url, "method": ctx.method})
            raise TransportError(
                f"connection failed: {exc}", retryable=True, url=ctx.url
            ) from exc

        except (aiohttp.ClientPayloadError, aiohttp.ClientResponseError) as exc:
            raise TransportError(
                f"malformed response: {exc}", retryable=False, url=ctx.url
            ) from exc

        except (aiohttp.ClientError, OSError, ValueError) as exc:
            # InvalidURL is a ValueError; unreadable CA bundles raise SSLError/OSError
            raise TransportError(str(exc), retryable=False, url=ctx.url) from exc
