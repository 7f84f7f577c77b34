import asyncio
import functools
from typing import Any, Iterable, Mapping

from httpsend.core.errors import (
    ErrorPolicy,
    HttpSendError,
    get_current_error_policy,
    handle_error,
)
from httpsend.core.models import AttemptContext
from httpsend.http.client.cache import ResponseCache
from httpsend.http.client.descriptor import RequestDescriptor, validate_descriptor
from httpsend.http.client.response import ResponseRecord
from httpsend.http.client.transport import Transport
from httpsend.http.decode import decode_body
from httpsend.http.policy.redirect import RedirectFollower
from httpsend.http.policy.retry import RetryController, RetryPolicy
from httpsend.util.logging import get_logger

log = get_logger(__name__)

_UNDECODED = object()


class Dispatcher:
    """
    Public entry point for http.send.

    A dispatch validates the request, consults the cache, and on a miss runs
    retry -> redirect -> transport, decodes the body and writes the result
    back to the cache. Cached and fresh responses have the same shape.

    Args:
        transport: Transport used for network round-trips.
        cache: Response cache. Each dispatcher gets its own isolated cache
            unless one is passed in.
        retry_policy: Backoff configuration for retried attempts.
        max_redirects: Hop limit for followed redirects.
    """
    def __init__(
        self,
        transport: Transport | None = None,
        cache: ResponseCache | None = None,
        retry_policy: RetryPolicy | None = None,
        max_redirects: int | None = None,
    ):
        self.transport = transport or Transport()
        self.cache = cache if cache is not None else ResponseCache()
        self.retry = RetryController(retry_policy)
        self.max_redirects = max_redirects

    async def __aenter__(self):
        await self.transport.__aenter__()
        return self

    async def __aexit__(self, *exc):
        await self.transport.__aexit__(*exc)

    async def send(self, raw: Any) -> ResponseRecord:
        """
        Execute one http.send request.

        Raises:
            InvalidDescriptor: for malformed requests, before any I/O.
            HttpSendError: for dispatch failures, unless the request sets
                `raise_error: false` or the current ErrorPolicy collects errors.
        """
        descriptor = validate_descriptor(raw)

        cached = self.cache.lookup(descriptor)
        if cached is not None:
            log.debug("cache hit", extra={"url": descriptor.url, "method": descriptor.method})
            return cached

        try:
            record = await self._execute(descriptor)
        except HttpSendError as exc:
            policy = get_current_error_policy()
            if not descriptor.raise_error and policy is ErrorPolicy.RAISE:
                policy = ErrorPolicy.COLLECT
            error = handle_error(
                exc, policy, {"url": descriptor.url, "method": descriptor.method}
            )
            return ResponseRecord.from_error(error, url=descriptor.url)

        self.cache.store(descriptor, record)
        return record

    async def send_value(self, raw: Any) -> dict:
        """Execute a request and render the evaluator-facing response value."""
        record = await self.send(raw)
        return record.to_value()

    async def send_many(self, raws: Iterable[Any]) -> list[dict]:
        """Run independent requests concurrently, preserving input order."""
        return list(await asyncio.gather(*(self.send_value(raw) for raw in raws)))

    async def _execute(self, descriptor: RequestDescriptor) -> ResponseRecord:
        ctx = AttemptContext.start(descriptor)
        follower = RedirectFollower(self.max_redirects)
        call = functools.partial(follower.follow, send=self.transport.attempt)

        record = await self.retry.run(ctx, call)

        body = decode_body(
            record.raw_body,
            record.content_type,
            force_json=descriptor.force_json_decode,
            force_yaml=descriptor.force_yaml_decode,
            default=_UNDECODED,
        )
        log.debug(
            "dispatch complete",
            extra={
                "url": descriptor.url,
                "method": descriptor.method,
                "status": record.status_code,
                "attempts": ctx.attempt,
                "hops": len(ctx.hops),
            },
        )
        if body is _UNDECODED:
            return record
        return record.with_body(body)


async def http_send(raw: Any, dispatcher: Dispatcher | None = None) -> dict:
    """
    The `http.send` built-in.

    Args:
        raw: Request object (method, url, headers, body and option flags).
        dispatcher: Dispatcher holding the transport and cache to use. A
            fresh one (with an empty cache) is created when omitted, so
            `cache: true` only ever hits when a long-lived dispatcher is
            passed in; a warning is logged otherwise.

    Returns:
        dict: status, status_code, headers, raw_body, body and, on collected
        failures, error.
    """
    if dispatcher is None:
        if isinstance(raw, Mapping) and raw.get("cache") is True:
            log.warning(
                "cache requested without a shared dispatcher; nothing will be reused",
                extra={"url": raw.get("url", "-"), "method": raw.get("method", "-")},
            )
        dispatcher = Dispatcher()
    return await dispatcher.send_value(raw)


##### ASYNC IN SYNC #####
def http_send_blocking(raw: Any, dispatcher: Dispatcher | None = None) -> dict:
    """
    Run `http_send` to completion on a private event loop.

    Warning:
        Spins up its own event loop therefore this function must **not** be
        invoked from within an active asyncio event loop. Without a
        `dispatcher` every call starts with an empty cache.
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(http_send(raw, dispatcher))
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
