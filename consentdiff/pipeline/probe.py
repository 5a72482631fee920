"""
Two-phase consent probe.

Phase A loads the page in a fresh context and records everything it
does before any interaction.  Phase B loads the page again in a
second, cold context, triggers the requested consent control and
records what happens afterwards.  Phases never overlap: context A
is disposed before context B exists.  If the time budget cannot
cover phase B the run ends early and is marked partial.

``inspect`` wraps a run with validation, error-code mapping, the
quality self-check and the run-metadata sink.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from urllib import parse

from consentdiff import config
from consentdiff.analysis import third_parties
from consentdiff.browser import budget as budget_mod
from consentdiff.browser import events, phase, targets
from consentdiff.browser import transport as transport_mod
from consentdiff.consent import constants, hunter
from consentdiff.models import api, evidence, quality
from consentdiff.persistence import run_sink
from consentdiff.quality import self_check
from consentdiff.snapshot import builder
from consentdiff.utils import errors, logger
from consentdiff.utils import url as url_mod

log = logger.create_logger("Probe")

TransportFactory = Callable[[str], Awaitable[transport_mod.CDPTransport]]


def normalize_target_url(raw: str | None) -> str:
    """Trim *raw* and default its scheme to https.

    Raises:
        MissingUrlError: Nothing usable was supplied.
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise errors.MissingUrlError("URL is required")
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    parsed = parse.urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise errors.MissingUrlError(f"Not a usable http(s) URL: {raw}")
    return candidate


def detect_cmp(snapshot: evidence.Snapshot) -> evidence.CmpSignal:
    """First known consent-manager cookie in the snapshot's jar."""
    for cookie in snapshot.jar_cookies:
        if constants.CMP_COOKIE_RE.search(cookie.name):
            return evidence.CmpSignal(
                detected=True,
                cookie_name=cookie.name,
                cookie_value=cookie.value[: constants.CMP_COOKIE_VALUE_MAX],
            )
    return evidence.CmpSignal()


def compute_metrics(result: evidence.ProbeResult) -> api.InspectMetrics:
    """Headline counts for the response and the run-metadata row."""
    host = url_mod.extract_domain(result.final_url)
    post = result.snapshots.post
    return api.InspectMetrics(
        requests_total=len(result.all_requests()),
        requests_pre_consent=len(result.snapshots.pre.requests),
        third_parties_count=len(third_parties.analyze_third_parties(result.all_requests(), host)),
        cookies_pre_count=len(result.snapshots.pre.jar_cookies),
        cookies_post_count=len(post.jar_cookies) if post else 0,
    )


# ============================================================================
# Orchestrator
# ============================================================================


class ConsentProbe:
    """Runs both phases over one transport connection."""

    def __init__(
        self,
        transport: transport_mod.CDPTransport,
        settings: config.ProbeSettings,
        *,
        clock: Callable[[], float] | None = None,
        trace_id: str | None = None,
    ) -> None:
        self.settings = settings
        self.trace_id = trace_id or str(uuid.uuid4())
        self.budget = budget_mod.TimeBudget(settings.budget_ms, floor_ms=settings.allocate_floor_ms, clock=clock)
        self.phase = phase.PhaseController()
        self.targets = targets.TargetManager(transport)
        self.pipeline = events.EventPipeline(transport, self.phase)
        self.builder = builder.SnapshotBuilder(transport, self.pipeline)
        self.hunter = hunter.ConsentHunter(transport)

    def _allocate(self, requested_ms: int) -> int:
        return self.budget.allocate(requested_ms, self.settings.wait_buffer_ms)

    async def _settle(self, session: evidence.Session) -> bool:
        """Wait for the load event, then for network idleness."""
        loaded = await self.targets.wait_for_load(session, self._allocate(self.settings.navigation_timeout_ms))
        idle = await self.pipeline.idle.wait_for_idle(
            self.settings.idle_hold_ms,
            self._allocate(self.settings.idle_max_ms),
            self.settings.idle_poll_ms,
        )
        log.debug("Page settled", {"loaded": loaded, "idle": idle, "remainingMs": self.budget.remaining_ms()})
        return loaded

    async def run(self, url: str, path_mode: evidence.PathMode) -> evidence.ProbeResult:
        """Run phase A and, budget permitting, phase B.

        Raises:
            TransportFailedError: The connection failed mid-run.
            ProtocolError: A context could not be created.
        """
        self.pipeline.attach()
        try:
            return await self._run(url, path_mode)
        finally:
            self.pipeline.detach()
            self.targets.close()

    async def _run(self, url: str, path_mode: evidence.PathMode) -> evidence.ProbeResult:
        # ── Phase A: pre-consent ────────────────────────────────
        log.subsection("Phase A: pre-consent")
        log.start_timer("phase-a")
        phase_a_start = self.budget.elapsed_ms()

        opened_a = await self.targets.open_context(url, on_attached=self.pipeline.activate)
        try:
            await self._settle(opened_a.session)
            final_url = await self.targets.current_url(opened_a.session) or url
            self.pipeline.deactivate()
            pre = await self.builder.build("pre", opened_a.session)
        finally:
            self.pipeline.deactivate()
            await self.targets.dispose_context(opened_a)

        pre_ms = self.budget.elapsed_ms() - phase_a_start
        log.end_timer("phase-a", "Phase A complete")
        cmp = detect_cmp(pre)
        if cmp.detected:
            log.info("Consent manager cookie present before interaction", {"cookie": cmp.cookie_name})

        if not self.budget.sufficient_for(self.settings.min_phase_b_ms):
            log.warn(
                "Budget exhausted before phase B, returning partial result",
                {"remainingMs": self.budget.remaining_ms(), "neededMs": self.settings.min_phase_b_ms},
            )
            return evidence.ProbeResult(
                trace_id=self.trace_id,
                final_url=final_url,
                path_mode=path_mode,
                snapshots=evidence.PhaseSnapshots(pre=pre),
                phase_durations_ms=evidence.PhaseDurations(pre=pre_ms),
                partial=True,
                navigation_ok=opened_a.navigation.success,
                cmp=cmp,
            )

        # ── Phase B: consent interaction ────────────────────────
        log.subsection(f"Phase B: {path_mode}")
        log.start_timer("phase-b")
        phase_b_start = self.budget.elapsed_ms()
        post_phase = phase.phase_for_path(path_mode)

        opened_b = await self.targets.open_context(url, on_attached=self.pipeline.activate)
        try:
            await self._settle(opened_b.session)
            consent = await self.hunter.find(path_mode, opened_b.session)
            self.phase.advance(post_phase)
            if consent.clicked:
                settle_ms = self._allocate(self.settings.post_click_settle_ms)
                await asyncio.sleep(settle_ms / 1000)
            await self.pipeline.idle.wait_for_idle(
                self.settings.idle_hold_ms,
                self._allocate(self.settings.idle_max_ms),
                self.settings.idle_poll_ms,
            )
            final_url = await self.targets.current_url(opened_b.session) or final_url
            self.pipeline.deactivate()
            post = await self.builder.build(post_phase, opened_b.session)
        finally:
            self.pipeline.deactivate()
            await self.targets.dispose_context(opened_b)

        post_ms = self.budget.elapsed_ms() - phase_b_start
        log.end_timer("phase-b", "Phase B complete")

        return evidence.ProbeResult(
            trace_id=self.trace_id,
            final_url=final_url,
            path_mode=path_mode,
            snapshots=evidence.PhaseSnapshots(pre=pre, post=post),
            phase_durations_ms=evidence.PhaseDurations(pre=pre_ms, post=post_ms),
            partial=False,
            navigation_ok=opened_a.navigation.success or opened_b.navigation.success,
            consent=consent,
            cmp=cmp,
        )


# ============================================================================
# Run metadata
# ============================================================================

_pending_records: set[asyncio.Task[None]] = set()


async def _record_run(sink: run_sink.RunSink, metadata: api.RunMetadata) -> None:
    try:
        await sink.record(metadata)
    except Exception as exc:
        log.warn("Run sink raised", {"error": errors.get_error_message(exc), "traceId": metadata.trace_id})


def _record_in_background(sink: run_sink.RunSink, metadata: api.RunMetadata) -> None:
    task = asyncio.create_task(_record_run(sink, metadata))
    _pending_records.add(task)
    task.add_done_callback(_pending_records.discard)


async def drain_pending_records() -> None:
    """Wait for run-metadata writes that are still in flight."""
    if _pending_records:
        await asyncio.gather(*_pending_records)


# ============================================================================
# Entry point
# ============================================================================


async def inspect(
    raw_url: str | None,
    path_mode: evidence.PathMode = "accept",
    *,
    host_config: config.BrowserHostConfig | None = None,
    settings: config.ProbeSettings | None = None,
    sink: run_sink.RunSink | None = None,
    connect: TransportFactory | None = None,
    clock: Callable[[], float] | None = None,
    trace_id: str | None = None,
) -> api.InspectSuccess | api.InspectFailure:
    """Validate input, run the probe and self-check, and record the run.

    Never raises for run failures: they come back as
    ``InspectFailure`` with a closed error code.  The metadata row is
    written by a background task; ``drain_pending_records`` waits for it.
    """
    trace_id = trace_id or str(uuid.uuid4())
    host_config = host_config or config.BrowserHostConfig()
    settings = settings or config.ProbeSettings()
    sink = sink or run_sink.NullRunSink()
    connect = connect or transport_mod.CDPTransport.connect

    logger.bind_trace_id(trace_id)
    logger.clear_log_buffer()
    started_at = datetime.now(UTC)
    log.section(f"Inspecting ({path_mode})")
    log.start_timer("total-run")

    url = (raw_url or "").strip()
    response: api.InspectSuccess | api.InspectFailure
    result: evidence.ProbeResult | None = None
    metrics: api.InspectMetrics | None = None
    transport: transport_mod.CDPTransport | None = None
    try:
        url = normalize_target_url(raw_url)
        logger.start_log_file(trace_id, url_mod.extract_domain(url))
        log.info("Request received", {"url": url, "pathMode": path_mode})

        if not host_config.validate_config():
            raise errors.AuthFailedError("No browser host token configured (BROWSERLESS_TOKEN or BROWSERLESS_API_KEY)")
        log.info("Browser host", {"base": host_config.http_base(), "token": host_config.masked_token()})

        async with asyncio.timeout(settings.outer_timeout_s):
            transport = await connect(host_config.websocket_url())
            probe = ConsentProbe(transport, settings, clock=clock, trace_id=trace_id)
            result = await probe.run(url, path_mode)

        metrics = compute_metrics(result)
        reported = quality.ReportedFigures(max_retention_days=settings.max_retention_days)
        check = self_check.evaluate_result(result, reported)
        response = api.InspectSuccess(
            trace_id=trace_id,
            final_url=result.final_url,
            path_mode=path_mode,
            metrics=metrics,
            data=result.snapshots,
            phase_durations_ms=result.phase_durations_ms,
            partial=result.partial,
            gates=check.gates,
            consent=result.consent,
            cmp=result.cmp,
            self_check=check,
        )
        log.success("Inspection complete", {"partial": result.partial, "requests": metrics.requests_total})
    except TimeoutError:
        log.error("Run exceeded outer timeout", {"timeoutS": settings.outer_timeout_s})
        response = api.InspectFailure(
            error_code="EXECUTION_ERROR",
            details=f"Run exceeded {settings.outer_timeout_s:g}s",
            trace_id=trace_id,
        )
    except Exception as exc:
        code = errors.error_code_for(exc)
        log.error("Inspection failed", {"errorCode": code, "error": errors.get_error_message(exc)})
        response = api.InspectFailure(error_code=code, details=errors.get_error_message(exc), trace_id=trace_id)
    finally:
        if transport is not None:
            await transport.close()
        duration_ms = round(log.end_timer("total-run", "Run finished"))
        logger.end_log_file()

    if isinstance(response, api.InspectSuccess) and result is not None:
        status: api.RunStatus = "partial" if result.partial else "success"
        timings = {"pre": result.phase_durations_ms.pre, "post": result.phase_durations_ms.post}
    else:
        status = "error"
        timings = {}

    metadata = api.RunMetadata(
        trace_id=trace_id,
        status=status,
        mode=path_mode,
        input_url=url or (raw_url or ""),
        final_url=result.final_url if result else None,
        started_at=started_at,
        ended_at=datetime.now(UTC),
        duration_ms=duration_ms,
        error_code=response.error_code if isinstance(response, api.InspectFailure) else None,
        error_message=response.details if isinstance(response, api.InspectFailure) else None,
        timings=timings,
        counts=metrics,
    )
    _record_in_background(sink, metadata)
    return response
