"""
Fire-and-forget run-metadata sinks.

A sink is told about every finished run exactly once.  Sinks never
raise: a failed write is logged and the run result is unaffected.
"""

from __future__ import annotations

from typing import Protocol

import aiohttp

from consentdiff import config
from consentdiff.models import api
from consentdiff.utils import errors, logger

log = logger.create_logger("RunSink")

_WRITE_TIMEOUT = aiohttp.ClientTimeout(total=10)


class RunSink(Protocol):
    """Receives metadata for each finished run."""

    async def record(self, metadata: api.RunMetadata) -> None: ...


class NullRunSink:
    """Discards everything."""

    async def record(self, metadata: api.RunMetadata) -> None:
        return None


class LoggingRunSink:
    """Writes a one-line summary of each run to the log."""

    async def record(self, metadata: api.RunMetadata) -> None:
        log.info(
            "Run recorded",
            {
                "traceId": metadata.trace_id,
                "status": metadata.status,
                "mode": metadata.mode,
                "durationMs": metadata.duration_ms,
                "errorCode": metadata.error_code,
            },
        )


class SupabaseRunSink:
    """Inserts one ``audit_runs`` row per run through the PostgREST API."""

    def __init__(self, sink_config: config.SinkConfig, *, table: str = "audit_runs") -> None:
        self._endpoint = f"{sink_config.supabase_url.rstrip('/')}/rest/v1/{table}"
        self._key = sink_config.service_role_key

    async def record(self, metadata: api.RunMetadata) -> None:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        try:
            async with aiohttp.ClientSession(timeout=_WRITE_TIMEOUT) as session:
                async with session.post(self._endpoint, json=metadata.to_row(), headers=headers) as response:
                    if response.status >= 400:
                        body = await response.text()
                        log.warn(
                            "Run metadata insert rejected",
                            {"status": response.status, "body": body[:200], "traceId": metadata.trace_id},
                        )
                        return
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            log.warn("Run metadata insert failed", {"error": errors.get_error_message(exc), "traceId": metadata.trace_id})
            return
        log.debug("Run metadata stored", {"traceId": metadata.trace_id})


def sink_from_config(sink_config: config.SinkConfig | None = None) -> RunSink:
    """Supabase sink when configured, otherwise the logging sink."""
    sink_config = sink_config or config.SinkConfig()
    if sink_config.validate_config():
        return SupabaseRunSink(sink_config)
    return LoggingRunSink()
