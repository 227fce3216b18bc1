"""Detection scheduler.

Drives the fixed-interval capture -> detect -> gate -> process -> send loop
and routes recognition results back into the crop history, the state
machine and the sound notifier. Cycles never overlap.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.base_service import BaseService
from ..core.entities import (
    CropStatus, FaceBox, Frame, OverlayState, PipelineResult, RecognitionOutcome, SoundEvent,
)
from ..core.exceptions import CaptureError, DetectionError, NetworkError, PipelineError
from ..core.logging_config import CorrelationContext
from ..core.performance import PerformanceTimer
from ..utils.geometry import (
    fit_to_viewport, is_face_large_enough, mirror_box, select_largest_face, to_display_rect,
)

OverlayListener = Callable[[OverlayState], None]

SERVICE_UNAVAILABLE = "recognition service unavailable"
OUT_OF_MEMORY = "OOM_ERROR"


class DetectionScheduler(BaseService):
    """Runs detection cycles and hands the largest face to the recognition service."""

    def __init__(self, camera, detector, pipeline, session, state_machine, history,
                 notifier, config, clock: Callable[[], float] = time.monotonic):
        super().__init__(config=config, service_name="DetectionScheduler")
        self.camera = camera
        self.detector = detector
        self.pipeline = pipeline
        self.session = session
        self.state_machine = state_machine
        self.history = history
        self.notifier = notifier
        self._clock = clock

        self.interval = config.detection_interval_ms / 1000.0
        self._viewport: Tuple[int, int] = (config.viewport_width, config.viewport_height)
        self._suspended = False
        self._cycle_running = False
        self._cycle_count = 0
        self._last_cycle_at: Optional[float] = None
        self._cycle_preview_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._last_overlay: Optional[OverlayState] = None
        self._overlay_listeners: List[OverlayListener] = []

        session.add_result_listener(self._on_result)
        session.add_error_listener(self._on_session_error)

    def _initialize(self) -> None:
        self.camera.initialize()
        self.detector.initialize()

    def _shutdown(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.camera.shutdown()
        self.detector.shutdown()

    def _get_health_details(self) -> Dict[str, Any]:
        details = super()._get_health_details()
        details.update({
            'cycles': self._cycle_count,
            'suspended': self._suspended,
            'cycle_running': self._cycle_running,
            'recognition_state': self.state_machine.state.value,
            'connected': self.session.is_connected,
        })
        return details

    @property
    def cycle_running(self) -> bool:
        return self._cycle_running

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def viewport(self) -> Tuple[int, int]:
        return self._viewport

    @property
    def last_overlay(self) -> Optional[OverlayState]:
        return self._last_overlay

    def add_overlay_listener(self, listener: OverlayListener) -> None:
        self._overlay_listeners.append(listener)

    def set_viewport(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Viewport must be positive, got {width}x{height}")
        self._viewport = (width, height)

    def suspend(self) -> None:
        """Pause automatic cycles (full-screen preview inspection)."""
        self._suspended = True
        self.logger.info("Detection suspended")

    def resume(self) -> None:
        self._suspended = False
        self.logger.info("Detection resumed")

    async def start(self) -> None:
        """Initialize collaborators and start the detection loop."""
        if self._task is not None and not self._task.done():
            return
        self.initialize()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="detection-loop")
        self._set_running(True)
        self.logger.info(f"Detection loop started ({self.interval * 1000:.0f} ms interval)")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        waiting = self.history.find_waiting()
        if waiting is not None:
            self.history.update_status(waiting.id, CropStatus.NOT_RECOGNIZED,
                                       error_message="detection stopped")
        self.state_machine.hard_reset("scheduler stopped")
        self._set_running(False)

    def request_manual_detection(self) -> Optional[asyncio.Task]:
        """Re-arm automatic triggering and run a cycle now if none is running."""
        self.state_machine.enable_auto_trigger()
        if self._cycle_running:
            return None
        return asyncio.get_running_loop().create_task(self.run_cycle(), name="manual-detection")

    def should_start_cycle(self) -> bool:
        return (
            not self._suspended
            and not self._cycle_running
            and self.state_machine.auto_trigger_enabled
        )

    async def _run(self) -> None:
        while True:
            if self.should_start_cycle():
                await self.run_cycle()
            await asyncio.sleep(self.interval)

    async def run_cycle(self) -> bool:
        """Run one detection cycle.

        Returns:
            True if a recognition request was sent
        """
        if self._cycle_running:
            return False
        self._cycle_running = True
        self._cycle_count += 1
        self._last_cycle_at = self._clock()
        self._cycle_preview_id = None

        with CorrelationContext(f"cycle-{self._cycle_count}"):
            try:
                with self.operation_context("cycle"), PerformanceTimer("scheduler.cycle"):
                    return await self._cycle()
            except Exception as e:
                self.logger.exception("Unexpected error in detection cycle")
                self.session.reset()
                if self._cycle_preview_id is not None:
                    self._finalize_failed(self._cycle_preview_id, f"unexpected error: {e}")
                self.state_machine.hard_reset("unexpected error")
                self.notifier.play(SoundEvent.ERROR)
                return False
            finally:
                self._cycle_preview_id = None
                self._cycle_running = False

    async def _cycle(self) -> bool:
        try:
            frame = await self.camera.capture()
        except CaptureError as e:
            self.logger.warning(f"Capture failed: {e}")
            return False

        try:
            fit = fit_to_viewport(frame.width, frame.height, *self._viewport)
        except ValueError as e:
            self.logger.warning(f"Cannot fit frame into viewport: {e}")
            return False

        try:
            boxes = await self.detector.detect(frame)
        except DetectionError as e:
            self.logger.warning(f"Face detection failed: {e}")
            return False

        largest = select_largest_face(boxes)
        self._publish_overlay(frame, fit, boxes, largest)

        if largest is None:
            return False

        padding = self.config.bounding_box_padding
        if not is_face_large_enough(largest, fit, frame.width, frame.height,
                                    self.config.min_face_display_size, padding):
            self.logger.debug("Largest face too small on screen, skipping")
            return False

        if self.session.has_pending:
            self.logger.debug("Request still pending, skipping")
            return False

        if not self.state_machine.try_begin_processing():
            return False

        self.logger.info(f"Processing face {largest} ({len(boxes)} detected)")
        try:
            result = await self.pipeline.process(frame, boxes)
        except PipelineError as e:
            self.logger.error(f"Image processing failed: {e}")
            self.state_machine.hard_reset(f"pipeline stage {e.stage} failed")
            self.notifier.play(SoundEvent.ERROR if e.code == OUT_OF_MEMORY else SoundEvent.NOT_RECOGNIZED)
            return False

        self._cycle_preview_id = result.preview.id
        return await self._submit(result)

    async def _submit(self, result: PipelineResult) -> bool:
        preview_id = result.preview.id
        if not self.session.is_connected:
            self._fail_submission(preview_id, SERVICE_UNAVAILABLE)
            return False

        # enter waiting before the send so a fast response finds the right state
        self.state_machine.mark_waiting(preview_id)
        try:
            await self.session.send(result.payload, preview_id)
        except NetworkError as e:
            self.logger.error(f"Sending recognition request failed: {e}")
            if self._is_final(preview_id):
                # the session already reported the failure through _on_session_error
                return False
            self._fail_submission(preview_id, SERVICE_UNAVAILABLE)
            return False
        return True

    def _is_final(self, preview_id: str) -> bool:
        entry = self.history.find(preview_id)
        return entry is not None and entry.is_final

    def _finalize_failed(self, preview_id: str, reason: str) -> None:
        if not self._is_final(preview_id):
            self.history.update_status(preview_id, CropStatus.NOT_RECOGNIZED, error_message=reason)

    def _fail_submission(self, preview_id: str, reason: str) -> None:
        self._finalize_failed(preview_id, reason)
        self.state_machine.fail_local(reason)
        self.notifier.play(SoundEvent.NOT_RECOGNIZED)

    def _publish_overlay(self, frame: Frame, fit, boxes: List[FaceBox],
                         largest: Optional[FaceBox]) -> None:
        padding = self.config.bounding_box_padding
        mirror = self.config.mirror_front_camera

        def display(box: FaceBox):
            if mirror:
                box = mirror_box(box, frame.width)
            return to_display_rect(box, fit, frame.width, frame.height, padding)

        overlay = OverlayState(
            frame=frame,
            fit=fit,
            rects=tuple(display(box) for box in boxes),
            face_count=len(boxes),
            recognition_state=self.state_machine.state,
            largest_rect=display(largest) if largest is not None else None,
        )
        self._last_overlay = overlay
        for listener in list(self._overlay_listeners):
            try:
                listener(overlay)
            except Exception:
                self.logger.exception("Overlay listener failed")

    def _on_result(self, outcome: RecognitionOutcome) -> None:
        self.history.update_status(
            outcome.request_id, outcome.status,
            person_name=outcome.person_name, error_message=outcome.error_message,
        )
        if self.state_machine.resolve(outcome):
            event = (SoundEvent.RECOGNIZED if outcome.status is CropStatus.RECOGNIZED
                     else SoundEvent.NOT_RECOGNIZED)
            self.notifier.play(event)

    def _on_session_error(self, request_id: Optional[str], error: Exception) -> None:
        if request_id is None:
            self.logger.warning(f"Recognition service error with no pending request: {error}")
            return
        self.history.update_status(request_id, CropStatus.NOT_RECOGNIZED, error_message=str(error))
        self.state_machine.hard_reset(f"recognition error: {error}")
        self.notifier.play(SoundEvent.NOT_RECOGNIZED)
