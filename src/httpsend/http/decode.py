"""
Response body decoding.

The decode strategy is chosen once per response from the request flags and
the response content type, independent of anything that happened on the wire:

- FORCED_JSON / FORCED_YAML: the caller asserted the format, failures raise.
- SNIFFED_JSON / SNIFFED_YAML: the server's content type suggested a format,
  failures degrade to the raw body.
- RAW: the body is left as text/bytes.
"""

import json
from enum import Enum

import yaml

from httpsend.core.errors import DecodeError
from httpsend.util.logging import get_logger

log = get_logger(__name__)

JSON_MEDIA_TYPES = frozenset({"application/json", "text/json"})
YAML_MEDIA_TYPES = frozenset({
    "application/yaml",
    "application/x-yaml",
    "text/yaml",
    "text/x-yaml",
})


class DecodeMode(Enum):
    FORCED_JSON = "forced-json"
    FORCED_YAML = "forced-yaml"
    SNIFFED_JSON = "sniffed-json"
    SNIFFED_YAML = "sniffed-yaml"
    RAW = "raw"

    @property
    def forced(self) -> bool:
        return self in (DecodeMode.FORCED_JSON, DecodeMode.FORCED_YAML)


def media_type(content_type: str | None) -> str:
    """Return the lower-cased media type without parameters."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def charset(content_type: str | None, default: str = "utf-8") -> str:
    for param in (content_type or "").split(";")[1:]:
        name, _, value = param.strip().partition("=")
        if name.lower() == "charset" and value:
            return value.strip('"')
    return default


def select_decode_mode(
    force_json: bool,
    force_yaml: bool,
    content_type: str | None,
) -> DecodeMode:
    if force_json:
        return DecodeMode.FORCED_JSON
    if force_yaml:
        return DecodeMode.FORCED_YAML

    mtype = media_type(content_type)
    if mtype in JSON_MEDIA_TYPES or mtype.endswith("+json"):
        return DecodeMode.SNIFFED_JSON
    if mtype in YAML_MEDIA_TYPES or mtype.endswith("+yaml"):
        return DecodeMode.SNIFFED_YAML
    return DecodeMode.RAW


def _as_text(raw_body: bytes, content_type: str | None) -> str:
    try:
        return raw_body.decode(charset(content_type))
    except LookupError:
        return raw_body.decode("utf-8")


def _parse(mode: DecodeMode, text: str):
    if mode in (DecodeMode.FORCED_JSON, DecodeMode.SNIFFED_JSON):
        return json.loads(text)
    return yaml.safe_load(text)


def decode_body(
    raw_body: bytes,
    content_type: str | None,
    force_json: bool = False,
    force_yaml: bool = False,
    default=None,
):
    """
    Decode a response body into a structured value.

    Returns:
        The decoded value, or `default` when the body is empty, the mode is
        RAW, or a sniffed decode failed. Pass a sentinel as `default` to tell
        a decoded null apart from no decode at all.

    Raises:
        DecodeError: when a forced decode fails.
    """
    mode = select_decode_mode(force_json, force_yaml, content_type)
    if mode is DecodeMode.RAW or not raw_body:
        return default

    try:
        return _parse(mode, _as_text(raw_body, content_type))
    except (ValueError, yaml.YAMLError) as exc:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
        if mode.forced:
            raise DecodeError(mode.value, str(exc)) from exc
        log.debug(
            "sniffed decode failed, returning raw body",
            extra={"mode": mode.value, "content_type": content_type},
        )
        return default
