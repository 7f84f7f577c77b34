from httpsend.core.dispatcher import (
    Dispatcher,
    http_send,
    http_send_blocking,
)

__all__ = [
    'Dispatcher',
    'http_send',
    'http_send_blocking',
]
