import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from httpsend.core.errors import RetriesExhausted, TransportError
from httpsend.core.models import AttemptContext
from httpsend.http.client.response import ResponseRecord
from httpsend.http.policy.backoff import exponential_backoff
from httpsend.settings import SETTINGS
from httpsend.util.logging import get_logger

log = get_logger(__name__)


@dataclass
class RetryState:
    """Attempt bookkeeping for one dispatch: index, last failure, current delay."""
    max_attempts: int
    attempt: int = 0
    last_error: Optional[TransportError] = None
    delay: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


class RetryPolicy:
    """
    Retries transport-level failures only.

    A completed HTTP exchange is never retried, whatever its status code.
    Delays grow exponentially with jitter, never decrease between attempts,
    and are capped at `cap`.
    """
    def __init__(
        self,
        base: float | None = None,
        cap: float | None = None,
        jitter: bool | None = None,
    ):
        settings = SETTINGS.http.policy.retry
        self.base = settings.backoff_base if base is None else base
        self.cap = settings.backoff_cap if cap is None else cap
        self.jitter = settings.jitter if jitter is None else jitter

    def new_state(self, max_retry_attempts: int) -> RetryState:
        return RetryState(max_attempts=1 + max_retry_attempts)

    def should_retry(self, state: RetryState, exception: Exception) -> bool:
        if not isinstance(exception, TransportError) or not exception.retryable:
            return False
        return not state.exhausted

    def get_delay(self, state: RetryState) -> float:
        return exponential_backoff(
            state.attempt - 1,
            base=self.base,
            cap=self.cap,
            jitter=self.jitter,
            floor=state.delay,
        )


class RetryController:
    """Drive one dispatch through up to `1 + max_retry_attempts` attempts."""

    def __init__(self, policy: RetryPolicy | None = None):
        self.policy = policy or RetryPolicy()

    async def run(
        self,
        ctx: AttemptContext,
        call: Callable[[AttemptContext], Awaitable[ResponseRecord]],
    ) -> ResponseRecord:
        state = self.policy.new_state(ctx.descriptor.max_retry_attempts)

        while True:
            state.attempt += 1
            ctx.attempt = state.attempt
            try:
                return await call(ctx)
            except TransportError as exc:
                state.last_error = exc
                if not exc.retryable:
                    raise
                if not self.policy.should_retry(state, exc):
                    raise RetriesExhausted(state.attempt, exc) from exc

            state.delay = self.policy.get_delay(state)
            log.warning(
                "retrying",
                extra={
                    "url": ctx.url,
                    "method": ctx.method,
                    "retry": state.attempt,
                    "delay": state.delay,
                    "error": state.last_error.message,
                },
            )
            if state.delay:
                await asyncio.sleep(state.delay)
