# httpsend/http/client/response.py
import copy
from dataclasses import dataclass, field, replace
from http import HTTPStatus
from types import MappingProxyType
from typing import Any, Mapping, Optional

from httpsend.http.decode import charset


def status_line(status_code: int, reason: str | None = None) -> str:
    """Render "200 OK" style status text, falling back to the registered phrase."""
    if not reason:
        try:
            reason = HTTPStatus(status_code).phrase
        except ValueError:
            reason = ""
    return f"{status_code} {reason}".strip()


@dataclass(frozen=True)
class ResponseRecord:
    status_code: int
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    raw_body: bytes = b""
    body: Any = None
    url: str | None = None
    status: str = ""
    error: Optional[dict] = field(default=None, kw_only=True)
    decoded: bool = field(default=False, kw_only=True)

    @classmethod
    def from_exchange(
        cls,
        status_code: int,
        headers: Mapping[str, str],
        raw_body: bytes,
        *,
        url: str | None = None,
        reason: str | None = None,
    ) -> "ResponseRecord":
        merged: dict[str, str] = {}
        for name, value in headers.items():
            name = name.lower()
            # repeated headers are folded into one comma-separated value
            merged[name] = f"{merged[name]}, {value}" if name in merged else value
        return cls(
            status_code=status_code,
            headers=MappingProxyType(merged),
            raw_body=raw_body,
            url=url,
            status=status_line(status_code, reason),
        )

    @classmethod
    def from_error(cls, error: dict, url: str | None = None) -> "ResponseRecord":
        return cls(status_code=0, url=url, error=error)

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status_code < 400 and "location" in self.headers

    def text(self) -> str:
        try:
            return self.raw_body.decode(charset(self.content_type), errors="replace")
        except LookupError:
            return self.raw_body.decode("utf-8", errors="replace")

    def with_body(self, body: Any) -> "ResponseRecord":
        return replace(self, body=body, decoded=True)

    def to_value(self) -> dict:
        """
        Render the response as the value handed back to the policy evaluator.

        `body` is the decoded value when decoding succeeded (even a decoded
        null), otherwise the raw text. Decoded values are deep-copied so a caller can never mutate a
        record that also lives in the cache.
        """
        value = {
            "status": self.status,
            "status_code": self.status_code,
            "headers": dict(self.headers),
            "raw_body": self.text(),
            "body": copy.deepcopy(self.body) if self.decoded else self.text(),
        }
        if self.error is not None:
            value["error"] = dict(self.error)
        return value
