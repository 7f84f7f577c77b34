from .core.dispatcher import Dispatcher, http_send, http_send_blocking
from .core.errors import (
    DecodeError,
    ErrorPolicy,
    HttpSendError,
    InvalidDescriptor,
    RetriesExhausted,
    TooManyRedirects,
    TransportError,
    use_error_policy,
)
from .http.client.cache import ResponseCache
from .util.logging import configure_logging

__all__ = [
    'Dispatcher',
    'http_send',
    'http_send_blocking',
    'ResponseCache',
    'HttpSendError',
    'InvalidDescriptor',
    'DecodeError',
    'TransportError',
    'TooManyRedirects',
    'RetriesExhausted',
    'ErrorPolicy',
    'use_error_policy',
    'configure_logging',
]
