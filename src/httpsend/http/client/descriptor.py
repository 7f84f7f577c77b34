import difflib
import json
import os
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import urlsplit

from httpsend.core.errors import InvalidDescriptor
from httpsend.settings import SETTINGS
from httpsend.util.logging import get_logger

log = get_logger(__name__)

METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"})

_BOOL_FIELDS = (
    "cache",
    "force_cache",
    "force_json_decode",
    "force_yaml_decode",
    "enable_redirect",
    "raise_error",
    "tls_insecure_skip_verify",
    "tls_use_system_cert",
)

# Accepted by the built-in's signature but not implemented here
UNSUPPORTED_FIELDS = frozenset({
    "tls_client_cert",
    "tls_client_cert_file",
    "tls_client_cert_env_variable",
    "tls_client_key",
    "tls_client_key_file",
    "tls_client_key_env_variable",
    "tls_server_name",
    "caching_mode",
})

KNOWN_FIELDS = frozenset({
    "method",
    "url",
    "headers",
    "body",
    "raw_body",
    "timeout",
    "max_retry_attempts",
    "max_retry_atempts",
    "force_cache_duration_seconds",
    "tls_ca_cert",
    "tls_ca_cert_file",
    "tls_ca_cert_env_variable",
    *_BOOL_FIELDS,
}) | UNSUPPORTED_FIELDS

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")


@dataclass(frozen=True)
class TLSOptions:
    insecure_skip_verify: bool = False
    use_system_cert: bool = False
    ca_cert: str | None = None
    ca_cert_file: str | None = None


@dataclass(frozen=True)
class RequestDescriptor:
    """A validated, immutable http.send request."""
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    body: bytes | None = None

    cache: bool = False
    force_cache: bool = False
    force_cache_duration_seconds: int | None = None
    force_json_decode: bool = False
    force_yaml_decode: bool = False
    enable_redirect: bool = False
    max_retry_attempts: int = 0
    timeout: float | None = None
    raise_error: bool = True
    tls: TLSOptions | None = None


def parse_duration(value: Any) -> float:
    """
    Parse a timeout into seconds.

    Accepts a duration string made of number/unit pairs ("5s", "250ms",
    "1m30s") or an integer number of nanoseconds.
    """
    if isinstance(value, bool):
        raise ValueError("expected a duration string or integer nanoseconds")
    if isinstance(value, int):
        seconds = value / 1e9
    elif isinstance(value, str):
        text = value.strip()
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if not text or pos != len(text):
            raise ValueError(f"unparsable duration {value!r}")
    else:
        raise ValueError("expected a duration string or integer nanoseconds")

    if seconds <= 0:
        raise ValueError("duration must be positive")
    return seconds


def _check_unknown_fields(raw: Mapping[str, Any]) -> None:
    mode = SETTINGS.descriptor.unknown_fields
    if mode == "ignore":
        return

    for name in raw:
        if name in KNOWN_FIELDS:
            continue
        close = difflib.get_close_matches(str(name), KNOWN_FIELDS, n=1)
        hint = f"did you mean {close[0]!r}?" if close else "field is ignored"
        if mode == "error":
            raise InvalidDescriptor(str(name), f"unknown field, {hint}")
        log.warning(
            f"unknown request field {name!r}, {hint}",
            extra={"field": name, "suggestion": close[0] if close else None},
        )


def _get_bool(raw: Mapping[str, Any], name: str, default: bool) -> bool:
    value = raw.get(name)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidDescriptor(name, f"expected boolean, got {type(value).__name__}")
    return value


def _get_non_negative_int(raw: Mapping[str, Any], name: str) -> int | None:
    value = raw.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidDescriptor(name, f"expected integer, got {type(value).__name__}")
    if value < 0:
        raise InvalidDescriptor(name, "must not be negative")
    return value


def _validate_method(raw: Mapping[str, Any]) -> str:
    method = raw.get("method")
    if not isinstance(method, str):
        raise InvalidDescriptor("method", "missing or not a string")
    method = method.upper()
    if method not in METHODS:
        raise InvalidDescriptor("method", f"unknown method {raw['method']!r}")
    return method


def _validate_url(raw: Mapping[str, Any]) -> str:
    url = raw.get("url")
    if not isinstance(url, str) or not url:
        raise InvalidDescriptor("url", "missing or not a string")
    try:
        parts = urlsplit(url)
        # .port raises for out-of-range or non-numeric ports
        parts.port
    except ValueError as exc:
        raise InvalidDescriptor("url", str(exc)) from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidDescriptor("url", f"not an absolute http(s) url: {url!r}")
    return url


def _validate_headers(raw: Mapping[str, Any]) -> dict[str, str]:
    headers = raw.get("headers")
    if headers is None:
        return {}
    if not isinstance(headers, Mapping):
        raise InvalidDescriptor("headers", "expected an object")

    normalized = {}
    for key, value in headers.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise InvalidDescriptor("headers", f"header {key!r} must map a string to a string")
        normalized[key.lower()] = value
    return normalized


def _encode_body(raw: Mapping[str, Any], headers: dict[str, str]) -> bytes | None:
    raw_body = raw.get("raw_body")
    if raw_body is not None:
        if isinstance(raw_body, str):
            return raw_body.encode("utf-8")
        if isinstance(raw_body, (bytes, bytearray)):
            return bytes(raw_body)
        raise InvalidDescriptor("raw_body", "expected a string")

    if raw.get("body") is None:
        return None
    try:
        encoded = json.dumps(
            raw["body"], sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise InvalidDescriptor("body", f"not JSON serializable: {exc}") from exc
    headers.setdefault("content-type", "application/json")
    return encoded


def _validate_tls(raw: Mapping[str, Any]) -> TLSOptions | None:
    insecure = _get_bool(raw, "tls_insecure_skip_verify", False)
    system = _get_bool(raw, "tls_use_system_cert", False)

    ca_cert = raw.get("tls_ca_cert")
    if ca_cert is not None and not isinstance(ca_cert, str):
        raise InvalidDescriptor("tls_ca_cert", "expected a PEM string")

    env_var = raw.get("tls_ca_cert_env_variable")
    if env_var is not None:
        if not isinstance(env_var, str):
            raise InvalidDescriptor("tls_ca_cert_env_variable", "expected a string")
        if env_var not in os.environ:
            raise InvalidDescriptor("tls_ca_cert_env_variable", f"{env_var} is not set")
        ca_cert = os.environ[env_var]

    ca_cert_file = raw.get("tls_ca_cert_file")
    if ca_cert_file is not None:
        if not isinstance(ca_cert_file, str):
            raise InvalidDescriptor("tls_ca_cert_file", "expected a path")
        if not os.path.isfile(ca_cert_file):
            raise InvalidDescriptor("tls_ca_cert_file", f"no such file: {ca_cert_file}")

    if not (insecure or system or ca_cert or ca_cert_file):
        return None
    return TLSOptions(
        insecure_skip_verify=insecure,
        use_system_cert=system,
        ca_cert=ca_cert,
        ca_cert_file=ca_cert_file,
    )


def validate_descriptor(raw: Any) -> RequestDescriptor:
    """
    Validate a raw http.send request object.

    Args:
        raw: Mapping with at least `method` and `url`.

    Returns:
        An immutable RequestDescriptor.

    Raises:
        InvalidDescriptor: naming the first offending field.
    """
    if isinstance(raw, RequestDescriptor):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidDescriptor("request", f"expected an object, got {type(raw).__name__}")

    _check_unknown_fields(raw)

    unsupported = sorted(name for name in raw if name in UNSUPPORTED_FIELDS)
    if unsupported:
        raise InvalidDescriptor(unsupported[0], "option is not supported")

    method = _validate_method(raw)
    url = _validate_url(raw)
    headers = _validate_headers(raw)
    body = _encode_body(raw, headers)

    max_retry = _get_non_negative_int(raw, "max_retry_attempts")
    if max_retry is None:
        max_retry = _get_non_negative_int(raw, "max_retry_atempts")

    timeout = None
    if raw.get("timeout") is not None:
        try:
            timeout = parse_duration(raw["timeout"])
        except ValueError as exc:
            raise InvalidDescriptor("timeout", str(exc)) from exc

    force_cache = _get_bool(raw, "force_cache", False)
    force_cache_duration = _get_non_negative_int(raw, "force_cache_duration_seconds")
    if force_cache and force_cache_duration is None:
        raise InvalidDescriptor(
            "force_cache_duration_seconds", "required when force_cache is set"
        )

    return RequestDescriptor(
        method=method,
        url=url,
        headers=MappingProxyType(headers),
        body=body,
        cache=_get_bool(raw, "cache", False),
        force_cache=force_cache,
        force_cache_duration_seconds=force_cache_duration,
        force_json_decode=_get_bool(raw, "force_json_decode", False),
        force_yaml_decode=_get_bool(raw, "force_yaml_decode", False),
        enable_redirect=_get_bool(raw, "enable_redirect", False),
        max_retry_attempts=max_retry or 0,
        timeout=timeout,
        raise_error=_get_bool(raw, "raise_error", True),
        tls=_validate_tls(raw),
    )
