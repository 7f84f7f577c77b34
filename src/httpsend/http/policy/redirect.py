"""
Redirect following.

The transport never follows redirects on its own; every hop goes through
`RedirectFollower`, which decides the next method/body and enforces the hop
limit:

- 307/308 preserve method and body.
- 301/302 turn POST into GET and drop the body.
- 303 turns everything except HEAD into GET and drops the body.

With redirects disabled, a 3xx response is returned to the caller verbatim.
"""

from enum import Enum, auto
from typing import Awaitable, Callable
from urllib.parse import urljoin, urlsplit

from httpsend.core.errors import TooManyRedirects, TransportError
from httpsend.core.models import AttemptContext
from httpsend.http.client.response import ResponseRecord
from httpsend.settings import SETTINGS
from httpsend.util.logging import get_logger

log = get_logger(__name__)

_BODY_HEADERS = ("content-type", "content-length", "content-encoding", "transfer-encoding")


class RedirectState(Enum):
    PENDING = auto()
    FOLLOWING = auto()
    DONE = auto()
    FAILED = auto()


def redirect_method(status_code: int, method: str) -> tuple[str, bool]:
    """
    Return the method for the next hop and whether the body is dropped.
    """
    if status_code in (307, 308):
        return method, False
    if status_code == 303 and method != "HEAD":
        return "GET", True
    if status_code in (301, 302) and method == "POST":
        return "GET", True
    return method, False


class RedirectFollower:
    def __init__(self, max_hops: int | None = None):
        self.max_hops = SETTINGS.http.policy.redirect.max_hops if max_hops is None else max_hops
        self.state = RedirectState.PENDING

    async def follow(
        self,
        ctx: AttemptContext,
        send: Callable[[AttemptContext], Awaitable[ResponseRecord]],
    ) -> ResponseRecord:
        """
        Issue `ctx`'s request, following redirects when the descriptor allows it.

        `ctx` is advanced in place on every hop, so a retried attempt resumes
        from the last redirect target with the hop count preserved.
        """
        while True:
            response = await send(ctx)

            if not (ctx.descriptor.enable_redirect and response.is_redirect):
                self.state = RedirectState.DONE
                return response

            if len(ctx.hops) >= self.max_hops:
                self.state = RedirectState.FAILED
                raise TooManyRedirects(self.max_hops, [*ctx.hops, ctx.url])

            self.state = RedirectState.FOLLOWING
            self._advance(ctx, response)

    def _advance(self, ctx: AttemptContext, response: ResponseRecord) -> None:
        location = response.headers["location"]
        try:
            target = urljoin(ctx.url, location)
            parts = urlsplit(target)
            parts.port  # parsed lazily, raises on a malformed port
        except ValueError as exc:
            self.state = RedirectState.FAILED
            raise TransportError(
                f"invalid redirect location {location!r}: {exc}", retryable=False, url=ctx.url
            ) from exc
        if parts.scheme not in ("http", "https") or not parts.hostname:
            self.state = RedirectState.FAILED
            raise TransportError(
                f"unsupported redirect location {location!r}", retryable=False, url=ctx.url
            )

        method, drop_body = redirect_method(response.status_code, ctx.method)

        headers = dict(ctx.headers)
        if drop_body:
            for name in _BODY_HEADERS:
                headers.pop(name, None)
        if parts.hostname != urlsplit(ctx.url).hostname:
            headers.pop("authorization", None)

        log.debug(
            "following redirect",
            extra={
                "url": ctx.url,
                "method": ctx.method,
                "status": response.status_code,
                "target": target,
            },
        )

        ctx.hops.append(ctx.url)
        ctx.url = target
        ctx.method = method
        ctx.headers = headers
        if drop_body:
            ctx.body = None
