"""
Error taxonomy for http.send dispatches and the policy deciding how they surface.

Every failure a dispatch can produce is an `HttpSendError` subclass carrying a
stable `code`. Whether an error is raised to the caller or folded into the
response's `error` slot is decided by the current `ErrorPolicy`.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from enum import Enum, auto

from httpsend.util.logging import get_logger

log = get_logger(__name__)


class HttpSendError(Exception):
    """Base exception for all http.send failures."""

    code = "eval_http_send_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_value(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidDescriptor(HttpSendError):
    """The request descriptor is malformed. Raised before any I/O."""

    code = "eval_type_error"

    def __init__(self, field: str, reason: str):
        super().__init__(f"invalid request field {field!r}: {reason}")
        self.field = field
        self.reason = reason


class DecodeError(HttpSendError):
    """A forced decode of the response body failed."""

    code = "eval_http_send_decode_error"

    def __init__(self, mode: str, reason: str):
        super().__init__(f"{mode} decode failed: {reason}")
        self.mode = mode


class TransportError(HttpSendError):
    """A single network attempt failed before a complete HTTP exchange."""

    code = "eval_http_send_network_error"

    def __init__(self, message: str, *, retryable: bool, url: str | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.url = url


class TooManyRedirects(HttpSendError):
    """The redirect chain exceeded the hop limit."""

    code = "eval_http_send_redirect_error"

    def __init__(self, max_hops: int, hops: list[str]):
        super().__init__(
            f"redirect chain exceeded {max_hops} hops: {' -> '.join(hops)}"
        )
        self.max_hops = max_hops
        self.hops = hops


class RetriesExhausted(HttpSendError):
    """Every allowed attempt failed with a retryable transport error."""

    code = "eval_http_send_network_error"

    def __init__(self, attempts: int, last_error: TransportError):
        super().__init__(f"gave up after {attempts} attempts: {last_error.message}")
        self.attempts = attempts
        self.last_error = last_error


class ErrorPolicy(Enum):
    RAISE   = auto()   # re-raise
    COLLECT = auto()   # return a response carrying the error
    LOG     = auto()   # log at ERROR, then collect


_GLOBAL_DEFAULT = ErrorPolicy.RAISE

# Task-local override (None => fall back to _GLOBAL_DEFAULT)
_CURRENT: ContextVar[ErrorPolicy | None] = ContextVar("httpsend_err_policy", default=None)


def get_current_error_policy() -> ErrorPolicy:
    return _CURRENT.get() or _GLOBAL_DEFAULT


def set_default_error_policy(policy: ErrorPolicy) -> None:
    global _GLOBAL_DEFAULT
    _GLOBAL_DEFAULT = policy


@contextmanager
def use_error_policy(policy: ErrorPolicy):
    token = _CURRENT.set(policy)
    try:
        yield
    finally:
        _CURRENT.reset(token)


def handle_error(exc: HttpSendError, policy: ErrorPolicy, ctx: dict) -> dict | None:
    """
    Apply `policy` to a dispatch error.

    Returns the error value to store on the response for COLLECT/LOG, and
    raises `exc` for RAISE.
    """
    if policy is ErrorPolicy.LOG:
        log.error("dispatch error", extra={**ctx, "code": exc.code}, exc_info=exc)
        return exc.to_value()

    if policy is ErrorPolicy.COLLECT:
        return exc.to_value()

    raise exc
