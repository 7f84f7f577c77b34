"""
aiohttp request statistics and tracing hooks.
"""

import time
from collections import Counter
from dataclasses import dataclass, field

from aiohttp import TraceConfig


@dataclass
class TransportStats:
    total_requests: int = 0
    total_time: float = 0.0
    in_flight: int = 0
    status_counts: Counter = field(default_factory=Counter)
    error_count: int = 0
    bytes_received: int = 0
    min_latency: float | None = None
    max_latency: float | None = None


# ─────────────────────────────────────────────────────────────
# Trace hooks (MUST be async: aiohttp awaits them)
# ─────────────────────────────────────────────────────────────

async def on_request_start(session, context, params, stats: TransportStats):
    context.start_time = time.monotonic()
    stats.total_requests += 1
    stats.in_flight += 1


async def on_request_end(session, context, params, stats: TransportStats):
    latency = time.monotonic() - context.start_time
    stats.total_time += latency
    stats.in_flight -= 1

    status = getattr(params.response, "status", None)
    if status is not None:
        stats.status_counts[status] += 1

    content_length = getattr(params.response, "content_length", None)
    if content_length:
        stats.bytes_received += content_length

    if stats.min_latency is None or latency < stats.min_latency:
        stats.min_latency = latency

    if stats.max_latency is None or latency > stats.max_latency:
        stats.max_latency = latency


async def on_request_exception(session, context, params, stats: TransportStats):
    stats.error_count += 1
    stats.in_flight -= 1


# ─────────────────────────────────────────────────────────────
# TraceConfig builder
# ─────────────────────────────────────────────────────────────

def build_trace_config(stats: TransportStats) -> TraceConfig:
    """
    Build an aiohttp TraceConfig wired to the given stats object.

    IMPORTANT:
    aiohttp awaits all trace callbacks, so we must only register
    async callables here.
    """
    trace_config = TraceConfig()

    async def _on_start(s, c, p):
        await on_request_start(s, c, p, stats)

    async def _on_end(s, c, p):
        await on_request_end(s, c, p, stats)

    async def _on_exc(s, c, p):
        await on_request_exception(s, c, p, stats)

    trace_config.on_request_start.append(_on_start)
    trace_config.on_request_end.append(_on_end)
    trace_config.on_request_exception.append(_on_exc)

    return trace_config
