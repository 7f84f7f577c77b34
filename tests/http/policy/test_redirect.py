import pytest

from httpsend.core.errors import TooManyRedirects, TransportError
from httpsend.core.models import AttemptContext
from httpsend.http.client.descriptor import validate_descriptor
from httpsend.http.client.response import ResponseRecord
from httpsend.http.policy.redirect import RedirectFollower, RedirectState, redirect_method


def _ctx(**overrides):
    raw = {"method": "GET", "url": "http://example.com/start", "enable_redirect": True}
    raw.update(overrides)
    return AttemptContext.start(validate_descriptor(raw))


def _redirect(status, location):
    return ResponseRecord.from_exchange(status, {"Location": location}, b"")


def _ok(body=b"done"):
    return ResponseRecord.from_exchange(200, {}, body)


class RecordingSend:
    """Return scripted responses and record (method, url, body, headers) per hop."""
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    async def __call__(self, ctx):
        self.requests.append((ctx.method, ctx.url, ctx.body, dict(ctx.headers)))
        return self.responses.pop(0)


# ---------------------------------------------------------------------------
# Method policy
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "status, method, expected",
    [
        (301, "POST", ("GET", True)),
        (302, "POST", ("GET", True)),
        (301, "PUT", ("PUT", False)),
        (302, "GET", ("GET", False)),
        (303, "PUT", ("GET", True)),
        (303, "HEAD", ("HEAD", False)),
        (307, "POST", ("POST", False)),
        (308, "DELETE", ("DELETE", False)),
    ],
)
def test_redirect_method(status, method, expected):
    assert redirect_method(status, method) == expected


# ---------------------------------------------------------------------------
# Following
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_follows_relative_location():
    send = RecordingSend([_redirect(302, "/next"), _ok()])
    follower = RedirectFollower()

    record = await follower.follow(_ctx(), send)

    assert record.status_code == 200
    assert [url for _, url, _, _ in send.requests] == [
        "http://example.com/start",
        "http://example.com/next",
    ]
    assert follower.state is RedirectState.DONE


@pytest.mark.asyncio
async def test_redirect_disabled_returns_3xx_verbatim():
    redirect = _redirect(302, "/next")
    send = RecordingSend([redirect])

    record = await RedirectFollower().follow(_ctx(enable_redirect=False), send)

    assert record is redirect
    assert len(send.requests) == 1


@pytest.mark.asyncio
async def test_redirect_without_location_is_returned():
    response = ResponseRecord.from_exchange(302, {}, b"")
    send = RecordingSend([response])

    assert await RedirectFollower().follow(_ctx(), send) is response


@pytest.mark.asyncio
async def test_302_degrades_post_and_drops_body():
    send = RecordingSend([_redirect(302, "/next"), _ok()])
    ctx = _ctx(method="POST", body={"a": 1})

    await RedirectFollower().follow(ctx, send)

    (m1, _, b1, h1), (m2, _, b2, h2) = send.requests
    assert (m1, b1) == ("POST", b'{"a":1}')
    assert h1["content-type"] == "application/json"
    assert (m2, b2) == ("GET", None)
    assert "content-type" not in h2


@pytest.mark.asyncio
async def test_307_preserves_method_and_body():
    send = RecordingSend([_redirect(307, "http://example.com/other"), _ok()])

    await RedirectFollower().follow(_ctx(method="POST", raw_body="payload"), send)

    assert send.requests[1][:3] == ("POST", "http://example.com/other", b"payload")


@pytest.mark.asyncio
async def test_authorization_dropped_across_hosts():
    send = RecordingSend([
        _redirect(302, "http://example.com/same"),
        _redirect(302, "http://elsewhere.org/x"),
        _ok(),
    ])

    await RedirectFollower().follow(_ctx(headers={"Authorization": "Bearer t"}), send)

    assert send.requests[1][3]["authorization"] == "Bearer t"
    assert "authorization" not in send.requests[2][3]


@pytest.mark.asyncio
async def test_hop_limit_allows_exactly_max_hops():
    send = RecordingSend([_redirect(302, f"/hop{i}") for i in range(5)] + [_ok()])

    record = await RedirectFollower(max_hops=5).follow(_ctx(), send)

    assert record.status_code == 200
    assert len(send.requests) == 6


@pytest.mark.asyncio
async def test_too_many_redirects():
    send = RecordingSend([_redirect(302, f"/hop{i}") for i in range(6)] + [_ok()])
    follower = RedirectFollower(max_hops=5)

    with pytest.raises(TooManyRedirects) as excinfo:
        await follower.follow(_ctx(), send)

    assert excinfo.value.max_hops == 5
    assert len(send.requests) == 6
    assert follower.state is RedirectState.FAILED


@pytest.mark.asyncio
async def test_redirect_loop_terminates():
    send = RecordingSend([_redirect(301, "/start") for _ in range(10)])

    with pytest.raises(TooManyRedirects):
        await RedirectFollower(max_hops=3).follow(_ctx(), send)

    assert len(send.requests) == 4


@pytest.mark.asyncio
async def test_context_is_advanced_for_retries():
    ctx = _ctx()
    send = RecordingSend([_redirect(302, "/next"), _ok()])

    await RedirectFollower().follow(ctx, send)

    assert ctx.url == "http://example.com/next"
    assert ctx.hops == ["http://example.com/start"]


@pytest.mark.asyncio
@pytest.mark.parametrize("location", ["http://[::1/x", "http://example.com:port/x"])
async def test_malformed_location_raises_non_retryable(location):
    send = RecordingSend([_redirect(302, location), _ok()])
    follower = RedirectFollower()

    with pytest.raises(TransportError) as excinfo:
        await follower.follow(_ctx(), send)

    assert not excinfo.value.retryable
    assert len(send.requests) == 1
    assert follower.state is RedirectState.FAILED


@pytest.mark.asyncio
async def test_non_http_location_is_rejected():
    ctx = _ctx()
    send = RecordingSend([_redirect(302, "ftp://example.com/file"), _ok()])

    with pytest.raises(TransportError, match="unsupported redirect location"):
        await RedirectFollower().follow(ctx, send)

    assert ctx.url == "http://example.com/start"
