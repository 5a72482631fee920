"""Tests for consentdiff.utils.logger: trace binding, buffering and timers."""

from __future__ import annotations

import asyncio

import pytest

from consentdiff.utils import logger


@pytest.fixture(autouse=True)
def _clean_buffer() -> None:
    logger.bind_trace_id(None)
    logger.clear_log_buffer()


class TestTraceId:
    def test_lines_tagged_with_trace(self) -> None:
        logger.bind_trace_id("0123456789abcdef")
        logger.create_logger("Probe").info("Navigating", {"url": "https://example.com"})
        (line,) = logger.get_log_buffer()
        assert "<01234567>" in line
        assert "[Probe] Navigating" in line
        assert "url=" in line

    def test_isolated_per_task(self) -> None:
        async def run(trace: str) -> str | None:
            logger.bind_trace_id(trace)
            await asyncio.sleep(0)
            return logger.current_trace_id()

        async def main() -> list[str | None]:
            return await asyncio.gather(run("aaaa"), run("bbbb"))

        assert asyncio.run(main()) == ["aaaa", "bbbb"]
        assert logger.current_trace_id() is None


class TestBuffer:
    def test_ansi_stripped(self) -> None:
        logger.create_logger("Routes").warn("Slow")
        assert "\033[" not in logger.get_log_buffer()[0]

    def test_copy_returned(self) -> None:
        logger.create_logger("Routes").info("one")
        logger.get_log_buffer().clear()
        assert len(logger.get_log_buffer()) == 1

    def test_clear(self) -> None:
        logger.create_logger("Routes").info("one")
        logger.clear_log_buffer()
        assert logger.get_log_buffer() == []


class TestTimers:
    def test_end_without_start(self) -> None:
        assert logger.create_logger("Probe").end_timer("phase-a") == 0.0
        assert 'Timer "phase-a" was not started' in logger.get_log_buffer()[-1]

    def test_round_trip(self) -> None:
        log = logger.create_logger("Probe")
        log.start_timer("phase-a")
        assert log.end_timer("phase-a", "Phase A done") >= 0.0
        assert "Phase A done" in logger.get_log_buffer()[-1]
