"""Continuous capture session driven by APScheduler timers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum

from .camera import CaptureDevice, DeviceError
from .enrichment import EnrichmentPipeline, ScanQuery
from .models import (
    ProductRecord,
    ScanFailure,
    ScanResult,
    ScanSession,
    ScanSuccess,
    StabilityMetrics,
)
from .stability import StabilityAssessor

logger = logging.getLogger(__name__)

_JOB_IDS = ("stability_check", "submission_gate", "submission_retry")


class ManagerState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    ENDED = "ended"


class ScanSessionManager:
    """Owns the capture device for one session and feeds the pipeline.

    Two interval jobs drive the loop: ``stability_check`` pushes shake
    feedback, ``submission_gate`` captures a burst and submits it once the
    latest stability check says the frame is steady enough. At most one
    pipeline call is in flight at a time; gate ticks that arrive while one
    is outstanding are dropped.
    """

    def __init__(
        self,
        device: CaptureDevice,
        pipeline: EnrichmentPipeline,
        *,
        assessor: StabilityAssessor | None = None,
        operator_id: str | None = None,
        stability_interval: float = 0.5,
        submission_interval: float = 3.0,
        burst_size: int = 2,
        retry_delay: float = 1.5,
        scheduler=None,
        on_update: Callable[[str, ScanSession], None] | None = None,
        on_stability: Callable[[StabilityMetrics], None] | None = None,
    ) -> None:
        """
        Args:
            scheduler: An APScheduler scheduler. When omitted the manager
                creates an ``AsyncIOScheduler`` and starts/stops it itself.

        Raises:
            ImportError: If apscheduler is not installed.
        """
        try:
            from apscheduler.triggers.date import DateTrigger
            from apscheduler.triggers.interval import IntervalTrigger
        except ImportError:
            raise ImportError(
                "apscheduler is required: pip install 'apscheduler>=3.10,<4'"
            ) from None

        self._owns_scheduler = scheduler is None
        if scheduler is None:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler

            scheduler = AsyncIOScheduler()

        self._device = device
        self._pipeline = pipeline
        self._assessor = assessor or StabilityAssessor()
        self._operator_id = operator_id
        self._stability_interval = stability_interval
        self._submission_interval = submission_interval
        self._burst_size = burst_size
        self._retry_delay = retry_delay
        self._scheduler = scheduler
        self._IntervalTrigger = IntervalTrigger
        self._DateTrigger = DateTrigger
        self._on_update = on_update
        self._on_stability = on_stability

        self._state = ManagerState.IDLE
        self._session: ScanSession | None = None
        self._in_flight: asyncio.Task | None = None
        self._last_metrics: StabilityMetrics | None = None
        self.end_reason: str | None = None

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def session(self) -> ScanSession | None:
        return self._session

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def start(self) -> ScanSession:
        """Acquire the device, open a session and start both timers.

        Raises:
            DeviceError: If the device cannot be acquired. The manager ends.
            RuntimeError: If the manager was already started.
            Exception: Whatever the scheduler raised while registering or
                starting the timers. The device is released and the
                manager ends with reason ``scheduler_failed``.
        """
        if self._state is not ManagerState.IDLE:
            raise RuntimeError(f"Manager already {self._state.value}")

        try:
            self._device.acquire()
        except DeviceError:
            self._state = ManagerState.ENDED
            self.end_reason = "device_unavailable"
            logger.error("Capture device unavailable, session not started")
            raise

        self._assessor.reset()
        self._last_metrics = None
        self._session = ScanSession()
        self._state = ManagerState.ACTIVE

        try:
            self._scheduler.add_job(
                self._stability_job,
                trigger=self._IntervalTrigger(seconds=self._stability_interval),
                id="stability_check",
                name="Stability feedback",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self._scheduler.add_job(
                self._submission_job,
                trigger=self._IntervalTrigger(seconds=self._submission_interval),
                id="submission_gate",
                name="Submission gate",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            if self._owns_scheduler:
                self._scheduler.start()
        except Exception:
            logger.exception("Failed to start session timers")
            self.end("scheduler_failed")
            raise

        logger.info("Session %s started", self._session.id)
        self._notify("session_started")
        return self._session

    def end(self, reason: str = "operator") -> None:
        """Stop timers, release the device and freeze the session.

        An in-flight pipeline call is left to finish; its result is discarded.
        """
        if self._state is ManagerState.ENDED:
            return
        self._state = ManagerState.ENDED
        self.end_reason = reason

        if self._owns_scheduler:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
        else:
            for job_id in _JOB_IDS:
                if self._scheduler.get_job(job_id) is not None:
                    self._scheduler.remove_job(job_id)

        try:
            self._device.release()
        except DeviceError:
            logger.exception("Error releasing capture device")

        if self._session is not None:
            self._session.end()
            logger.info(
                "Session %s ended (%s): %s",
                self._session.id,
                reason,
                self._session.stats(),
            )
        self._notify("session_ended")

    def tick_stability(self) -> StabilityMetrics:
        """Assess the current frame and report it; never raises."""
        try:
            frame = self._device.read_frame() if self._state is ManagerState.ACTIVE else None
        except Exception:
            logger.exception("Frame read failed during stability check")
            frame = None
        metrics = self._assessor.assess(frame)
        self._last_metrics = metrics
        if self._on_stability is not None:
            try:
                self._on_stability(metrics)
            except Exception:
                logger.exception("Stability callback failed")
        return metrics

    def tick_submission(self, *, force: bool = False) -> bool:
        """Capture a burst and submit it unless a call is already in flight.

        Without ``force`` nothing is submitted while the latest stability
        check says no-go. Before the first check there is no verdict and the
        tick goes ahead.

        Must be called from a running event loop.

        Returns:
            True if a pipeline call was launched.
        """
        if self._state is not ManagerState.ACTIVE or self._in_flight is not None:
            return False

        metrics = self._last_metrics
        if not force and metrics is not None and not metrics.is_acceptable:
            logger.debug("Frame not steady (%.1f), holding submission", metrics.shake_level)
            return False

        if not self._device.is_streaming() and not self._reacquire():
            return False

        frames = self._device.capture_burst(self._burst_size)
        if not frames:
            logger.debug("Empty burst, skipping submission")
            return False

        try:
            images = [frame.to_jpeg() for frame in frames]
        except RuntimeError:
            logger.exception("Failed to encode burst")
            return False

        query = ScanQuery.from_images(images, operator_id=self._operator_id)
        self._in_flight = asyncio.ensure_future(self._submit(query, self._session))
        return True

    def manual_trigger(self) -> bool:
        """Submit now, outside the gate timer.

        The operator decides the frame is good enough, so the stability
        verdict is ignored. The one-call-in-flight limit still applies.
        """
        return self.tick_submission(force=True)

    async def wait_in_flight(self) -> None:
        """Wait for the outstanding pipeline call, if any, to settle."""
        task = self._in_flight
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _stability_job(self) -> None:
        self.tick_stability()

    async def _submission_job(self) -> None:
        self.tick_submission()

    def _reacquire(self) -> bool:
        logger.warning("Capture stream stalled, reacquiring device")
        try:
            self._device.release()
            self._device.acquire()
        except DeviceError:
            logger.exception("Capture device lost")
            self.end("device_lost")
            return False
        self._assessor.reset()
        self._last_metrics = None
        return True

    async def _submit(self, query: ScanQuery, session: ScanSession | None) -> None:
        try:
            result = await self._pipeline.identify(query)
            self._handle_result(result, session)
        except Exception:
            logger.exception("Scan submission failed")
            self._schedule_retry()
        finally:
            self._in_flight = None

    def _handle_result(self, result: ScanResult, session: ScanSession | None) -> None:
        if session is None or session is not self._session or not session.is_active:
            logger.info("Discarding result that arrived after the session ended")
            return

        match result:
            case ScanSuccess(record=record):
                self._add(session, record)
            case ScanFailure(error=error):
                logger.warning("Scan failed: %s", error)
                self._schedule_retry()

    def _add(self, session: ScanSession, record: ProductRecord) -> None:
        if session.add_scan(record):
            logger.info("Added %r to session %s", record.name, session.id)
            self._notify("scan_added")
        else:
            logger.debug("%r already in session %s", record.name, session.id)

    def _schedule_retry(self) -> None:
        if self._state is not ManagerState.ACTIVE:
            return
        run_date = datetime.now() + timedelta(seconds=self._retry_delay)
        self._scheduler.add_job(
            self._submission_job,
            trigger=self._DateTrigger(run_date=run_date),
            id="submission_retry",
            name="Submission retry",
            replace_existing=True,
        )
        logger.info("Retrying submission in %.1fs", self._retry_delay)

    def _notify(self, event: str) -> None:
        if self._on_update is None or self._session is None:
            return
        try:
            self._on_update(event, self._session)
        except Exception:
            logger.exception("Session update callback failed")
