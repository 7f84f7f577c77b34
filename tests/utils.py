from httpsend.core.dispatcher import Dispatcher
from httpsend.http.client.cache import ResponseCache
from httpsend.http.client.transport import Transport
from httpsend.http.policy.retry import RetryPolicy


# ------------------------
# Fake HTTP primitives
# ------------------------

class FakeResponse:
    def __init__(self, status: int, body: bytes = b"", headers: dict | None = None, reason=None):
        self.status = status
        self._body = body
        self.headers = headers or {}
        self.reason = reason

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_):
        pass


class _RaiseOnEnter:
    def __init__(self, exc: BaseException):
        self._exc = exc

    async def __aenter__(self):
        raise self._exc

    async def __aexit__(self, *_):
        pass


class FakeSession:
    """
    Each .request() pops the next scripted outcome: a FakeResponse is returned,
    an exception is raised when the request context is entered.

    Every call is recorded in `calls` as (method, url, kwargs).
    """
    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if not self._outcomes:
            raise AssertionError(f"Unexpected request: {method} {url}")
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            return _RaiseOnEnter(outcome)
        return outcome

    async def close(self):
        pass


def make_dispatcher(outcomes, cache: ResponseCache | None = None, **kwargs):
    """
    Build a Dispatcher whose transport talks to a FakeSession.

    Backoff is jitter-free with a zero base so retries never sleep.
    """
    transport = Transport(concurrency=4, per_host=4)
    session = FakeSession(outcomes)
    transport._session = session
    dispatcher = Dispatcher(
        transport=transport,
        cache=cache,
        retry_policy=kwargs.pop("retry_policy", RetryPolicy(base=0.0, cap=0.0, jitter=False)),
        **kwargs,
    )
    return dispatcher, session
