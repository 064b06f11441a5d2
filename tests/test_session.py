"""Tests for the continuous scan session manager."""

import asyncio
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from doobiedb.scanner.camera import CaptureDevice, CaptureFrame, DeviceError
from doobiedb.scanner.models import ProductRecord, ScanFailure, ScanSuccess, StabilityMetrics
from doobiedb.scanner.session import ManagerState, ScanSessionManager
from doobiedb.scanner.stability import HOLD_STEADY


class FakeDevice(CaptureDevice):
    def __init__(self, fail_acquire=False):
        self.fail_acquire = fail_acquire
        self.streaming = False
        self.acquired = 0
        self.released = 0

    def acquire(self):
        if self.fail_acquire:
            raise DeviceError("camera denied")
        self.acquired += 1
        self.streaming = True

    def release(self):
        self.released += 1
        self.streaming = False

    def read_frame(self):
        if not self.streaming:
            return None
        return CaptureFrame(
            pixels=np.zeros((48, 64, 3), dtype=np.uint8),
            captured_at="2026-01-01T00:00:00+00:00",
            width=64,
            height=48,
        )

    def is_streaming(self):
        return self.streaming


class GatedPipeline:
    """Holds every identify() call until the test releases it."""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = []
        self.gate = asyncio.Event()

    async def identify(self, query):
        self.calls.append(query)
        await self.gate.wait()
        result = self.results.pop(0) if self.results else _success("Blue Dream")
        if isinstance(result, BaseException):
            raise result
        return result


def _record(name):
    return ProductRecord(
        name=name, category="Hybrid", confidence=90, thc=23.0, thc_min=22.0, thc_max=24.0
    )


def _success(name):
    return ScanSuccess(record=_record(name))


def _manager(device=None, pipeline=None, **kwargs):
    scheduler = MagicMock()
    manager = ScanSessionManager(
        device or FakeDevice(),
        pipeline or GatedPipeline(),
        operator_id="op1",
        scheduler=scheduler,
        **kwargs,
    )
    return manager, scheduler


def _job_ids(scheduler):
    return [c.kwargs["id"] for c in scheduler.add_job.call_args_list]


class TestLifecycle:
    def test_start_registers_timers(self):
        manager, scheduler = _manager()
        session = manager.start()

        assert manager.state is ManagerState.ACTIVE
        assert session.is_active
        assert _job_ids(scheduler) == ["stability_check", "submission_gate"]
        scheduler.start.assert_not_called()

    def test_device_unavailable_is_fatal(self):
        manager, scheduler = _manager(device=FakeDevice(fail_acquire=True))
        with pytest.raises(DeviceError):
            manager.start()
        assert manager.state is ManagerState.ENDED
        assert manager.session is None
        scheduler.add_job.assert_not_called()

    def test_cannot_start_twice(self):
        manager, _ = _manager()
        manager.start()
        with pytest.raises(RuntimeError):
            manager.start()

    def test_end_releases_and_freezes(self):
        device = FakeDevice()
        updates = []
        manager, scheduler = _manager(
            device=device, on_update=lambda event, session: updates.append(event)
        )
        session = manager.start()
        manager.end()

        assert manager.state is ManagerState.ENDED
        assert manager.end_reason == "operator"
        assert device.released == 1
        assert not session.is_active
        assert updates == ["session_started", "session_ended"]
        removed = [c.args[0] for c in scheduler.remove_job.call_args_list]
        assert "stability_check" in removed and "submission_gate" in removed

    def test_end_twice_is_noop(self):
        device = FakeDevice()
        manager, _ = _manager(device=device)
        manager.start()
        manager.end()
        manager.end("again")
        assert device.released == 1
        assert manager.end_reason == "operator"


class TestSubmission:
    @pytest.mark.asyncio
    async def test_rapid_ticks_keep_one_call_in_flight(self, mock_cv2):
        pipeline = GatedPipeline()
        manager, _ = _manager(pipeline=pipeline, burst_size=2)
        manager.start()

        assert manager.tick_submission() is True
        for _ in range(10):
            assert manager.tick_submission() is False
            await asyncio.sleep(0)
        assert len(pipeline.calls) == 1
        assert len(pipeline.calls[0].images) == 2
        assert pipeline.calls[0].operator_id == "op1"

        pipeline.gate.set()
        await manager.wait_in_flight()
        assert manager.in_flight is False
        assert manager.tick_submission() is True
        await manager.wait_in_flight()

    @pytest.mark.asyncio
    async def test_success_adds_scan(self, mock_cv2):
        pipeline = GatedPipeline([_success("OG Kush"), _success("og kush")])
        pipeline.gate.set()
        updates = []
        manager, _ = _manager(
            pipeline=pipeline, on_update=lambda event, session: updates.append(event)
        )
        session = manager.start()

        manager.tick_submission()
        await manager.wait_in_flight()
        manager.tick_submission()
        await manager.wait_in_flight()

        assert [s.name for s in session.scans] == ["OG Kush"]
        assert updates.count("scan_added") == 1

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, mock_cv2):
        failure = ScanFailure(error="timed out", fallback=_record("Unknown Strain"))
        pipeline = GatedPipeline([failure])
        pipeline.gate.set()
        manager, scheduler = _manager(pipeline=pipeline, retry_delay=1.5)
        session = manager.start()

        manager.tick_submission()
        await manager.wait_in_flight()

        assert session.scans == []
        assert _job_ids(scheduler)[-1] == "submission_retry"
        trigger = scheduler.add_job.call_args.kwargs["trigger"]
        assert type(trigger).__name__ == "DateTrigger"
        assert manager.in_flight is False

    @pytest.mark.asyncio
    async def test_exception_clears_in_flight_and_retries(self, mock_cv2):
        pipeline = GatedPipeline([RuntimeError("network down")])
        pipeline.gate.set()
        manager, scheduler = _manager(pipeline=pipeline)
        manager.start()

        manager.tick_submission()
        await manager.wait_in_flight()

        assert manager.in_flight is False
        assert manager.state is ManagerState.ACTIVE
        assert _job_ids(scheduler)[-1] == "submission_retry"

    @pytest.mark.asyncio
    async def test_end_during_flight_discards_late_result(self, mock_cv2):
        pipeline = GatedPipeline([_success("Blue Dream")])
        manager, scheduler = _manager(pipeline=pipeline)
        session = manager.start()

        manager.tick_submission()
        await asyncio.sleep(0)
        manager.end()
        pipeline.gate.set()
        await manager.wait_in_flight()

        assert session.scans == []
        assert manager.state is ManagerState.ENDED
        assert "submission_retry" not in _job_ids(scheduler)

    @pytest.mark.asyncio
    async def test_no_submission_when_not_active(self, mock_cv2):
        manager, _ = _manager()
        assert manager.tick_submission() is False
        manager.start()
        manager.end()
        assert manager.tick_submission() is False

    @pytest.mark.asyncio
    async def test_stalled_stream_is_reacquired(self, mock_cv2):
        device = FakeDevice()
        pipeline = GatedPipeline()
        manager, _ = _manager(device=device, pipeline=pipeline)
        session = manager.start()

        device.streaming = False
        assert manager.tick_submission() is True
        assert device.acquired == 2
        assert manager.session is session
        assert manager.state is ManagerState.ACTIVE
        pipeline.gate.set()
        await manager.wait_in_flight()

    @pytest.mark.asyncio
    async def test_device_lost_ends_session(self, mock_cv2):
        device = FakeDevice()
        manager, _ = _manager(device=device)
        session = manager.start()

        device.streaming = False
        device.fail_acquire = True
        assert manager.tick_submission() is False
        assert manager.state is ManagerState.ENDED
        assert manager.end_reason == "device_lost"
        assert not session.is_active

    @pytest.mark.asyncio
    async def test_manual_trigger_respects_in_flight(self, mock_cv2):
        pipeline = GatedPipeline()
        manager, _ = _manager(pipeline=pipeline)
        manager.start()

        assert manager.manual_trigger() is True
        assert manager.manual_trigger() is False
        pipeline.gate.set()
        await manager.wait_in_flight()
        assert len(pipeline.calls) == 1

    @pytest.mark.asyncio
    async def test_shaky_frame_holds_submission(self, mock_cv2):
        assessor = MagicMock()
        assessor.assess.return_value = StabilityMetrics("Hold steady", False, 45.0)
        pipeline = GatedPipeline()
        pipeline.gate.set()
        manager, _ = _manager(pipeline=pipeline, assessor=assessor)
        manager.start()

        manager.tick_stability()
        assert manager.tick_submission() is False
        assert pipeline.calls == []

        assessor.assess.return_value = StabilityMetrics("Ready", True, 2.0)
        manager.tick_stability()
        assert manager.tick_submission() is True
        await manager.wait_in_flight()
        assert len(pipeline.calls) == 1

    @pytest.mark.asyncio
    async def test_manual_trigger_ignores_stability(self, mock_cv2):
        assessor = MagicMock()
        assessor.assess.return_value = StabilityMetrics("Hold steady", False, 45.0)
        pipeline = GatedPipeline()
        pipeline.gate.set()
        manager, _ = _manager(pipeline=pipeline, assessor=assessor)
        manager.start()

        manager.tick_stability()
        assert manager.manual_trigger() is True
        await manager.wait_in_flight()
        assert len(pipeline.calls) == 1


class TestStabilityTick:
    def test_reports_metrics(self):
        seen = []
        manager, _ = _manager(on_stability=seen.append)
        manager.start()
        metrics = manager.tick_stability()
        assert seen == [metrics]
        assert metrics.is_acceptable is True

    def test_no_frame_before_start(self):
        manager, _ = _manager()
        assert manager.tick_stability().recommendation == HOLD_STEADY

    def test_callback_errors_are_contained(self):
        def boom(metrics):
            raise ValueError("ui gone")

        manager, _ = _manager(on_stability=boom)
        manager.start()
        manager.tick_stability()


@pytest.mark.asyncio
async def test_owned_scheduler_runs_jobs():
    manager = ScanSessionManager(FakeDevice(), GatedPipeline(), stability_interval=60)
    manager.start()
    try:
        job_ids = {job.id for job in manager._scheduler.get_jobs()}
        assert job_ids == {"stability_check", "submission_gate"}
        assert manager._scheduler.running
    finally:
        manager.end()
    # AsyncIOScheduler.shutdown completes on the next loop iteration
    await asyncio.sleep(0)
    assert manager._scheduler.running is False


def test_scheduler_failure_releases_device():
    device = FakeDevice()
    updates = []
    manager = ScanSessionManager(
        device,
        GatedPipeline(),
        on_update=lambda event, session: updates.append(event),
    )
    with patch(
        "apscheduler.schedulers.asyncio.AsyncIOScheduler.start",
        side_effect=RuntimeError("no running event loop"),
    ):
        with pytest.raises(RuntimeError, match="no running event loop"):
            manager.start()

    assert device.released == 1
    assert device.streaming is False
    assert manager.state is ManagerState.ENDED
    assert manager.end_reason == "scheduler_failed"
    assert not manager.session.is_active
    assert updates == ["session_ended"]


def test_job_registration_failure_releases_device():
    device = FakeDevice()
    manager, scheduler = _manager(device=device)
    scheduler.add_job.side_effect = ValueError("bad trigger")

    with pytest.raises(ValueError):
        manager.start()
    assert device.released == 1
    assert manager.state is ManagerState.ENDED
    assert manager.end_reason == "scheduler_failed"
