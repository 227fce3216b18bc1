"""Image processing pipeline: read, flip, crop, compress, persist.

Turns a captured frame and its detected faces into the base64 payload that
is sent to the recognition service, plus a small preview image registered
in the crop history. ``read`` and ``persist`` are required stages; ``flip``,
``crop`` and ``compress`` fall back to the previous stage's output, except
on out-of-memory errors, which end the cycle.
"""
from __future__ import annotations

import base64
import logging
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..core.entities import (
    CompressionResult, CropPreview, CropStatus, FaceBox, Frame, PipelineResult, StageTimings,
)
from ..core.exceptions import ImageOperationError, PipelineError
from ..core.performance import PerformanceMonitor
from ..utils.geometry import mirror_box, padded_crop_region, select_largest_face
from .crop_history import CropHistoryStore

logger = logging.getLogger(__name__)


class StageRecorder:
    """Records start and end timestamps of each pipeline stage."""

    def __init__(self, timer: Callable[[], float] = time.perf_counter):
        self._timer = timer
        self.marks: Dict[str, Tuple[float, float]] = {}
        self._open: Optional[Tuple[str, float]] = None

    @contextmanager
    def stage(self, name: str):
        start = self._timer()
        self._open = (name, start)
        try:
            yield
        finally:
            end = self._timer()
            self._open = None
            self.marks[name] = (start, end)
            PerformanceMonitor.instance().record_operation_time(f"pipeline.{name}", end - start)

    def _spans(self) -> Dict[str, Tuple[float, float]]:
        spans = dict(self.marks)
        if self._open is not None:
            # a stage that is still running counts up to now
            name, start = self._open
            spans[name] = (start, self._timer())
        return spans

    def duration_ms(self, name: str) -> float:
        spans = self._spans()
        if name not in spans:
            return 0.0
        start, end = spans[name]
        return (end - start) * 1000.0

    def timings(self) -> StageTimings:
        """Per-stage durations; total spans the first start to the last end."""
        spans = self._spans()
        total = 0.0
        if spans:
            first = min(start for start, _ in spans.values())
            last = max(end for _, end in spans.values())
            total = (last - first) * 1000.0
        return StageTimings(
            read_ms=self.duration_ms("read"),
            flip_ms=self.duration_ms("flip"),
            crop_ms=self.duration_ms("crop"),
            compress_ms=self.duration_ms("compress"),
            persist_ms=self.duration_ms("persist"),
            total_ms=total,
        )


def _new_preview_id() -> str:
    return uuid.uuid4().hex


class ImageProcessingPipeline:
    """Produces the transmission payload and preview for one detection cycle.

    Args:
        image_ops: Async image operators (``OpenCVImageOperations``)
        storage: Async file storage (``LocalFileStorage``)
        history: Crop history the preview is registered in
        config: Application configuration
        clock: Wall clock used for ``CropPreview.created_at``
    """

    def __init__(self, image_ops, storage, history: CropHistoryStore, config,
                 clock: Callable[[], float] = time.time,
                 id_factory: Callable[[], str] = _new_preview_id,
                 timer: Callable[[], float] = time.perf_counter):
        self.image_ops = image_ops
        self.storage = storage
        self.history = history
        self.config = config
        self._clock = clock
        self._id_factory = id_factory
        self._timer = timer
        self._last_timings: Optional[StageTimings] = None

    @property
    def last_timings(self) -> Optional[StageTimings]:
        return self._last_timings

    async def process(self, frame: Frame, boxes: Sequence[FaceBox]) -> PipelineResult:
        """Run all stages for ``frame``.

        Raises:
            PipelineError: If a required stage fails; a ``not_recognized``
                preview has already been recorded in the history
        """
        cfg = self.config
        preview_id = self._id_factory()
        recorder = StageRecorder(self._timer)

        with recorder.stage("read"):
            try:
                data = await self.storage.read_file(frame.path)
            except OSError as e:
                raise self._fail("read", f"cannot read frame: {e}", recorder, preview_id) from e
            if not data:
                raise self._fail("read", "frame file is empty", recorder, preview_id)
            try:
                data = await self.image_ops.exif_transpose(data)
            except ImageOperationError as e:
                raise self._fail("read", str(e), recorder, preview_id, code=e.code) from e

        flipped = False
        with recorder.stage("flip"):
            if cfg.mirror_front_camera:
                try:
                    data = await self.image_ops.flip(data, "horizontal")
                    flipped = True
                except ImageOperationError as e:
                    self._fallback_or_fail("flip", e, recorder, preview_id)

        crop = data
        with recorder.stage("crop"):
            region = self._crop_region(frame, boxes, flipped)
            if region is None:
                logger.warning("No usable face region, sending the full frame")
            else:
                try:
                    crop = await self.image_ops.crop_region(
                        data, *region, fmt=cfg.output_format, quality=cfg.image_quality
                    )
                except ImageOperationError as e:
                    self._fallback_or_fail("crop", e, recorder, preview_id)

        transmit, preview_bytes = crop, crop
        compression: Optional[CompressionResult] = None
        with recorder.stage("compress"):
            if cfg.compress_enabled:
                try:
                    compression = await self.image_ops.compress(
                        crop, cfg.transmit_max_width, cfg.transmit_max_height, cfg.transmit_quality
                    )
                    if cfg.transmit_target_kb and compression.compressed_size > cfg.transmit_target_kb * 1024:
                        compression = await self.image_ops.smart_compress(compression.data, cfg.transmit_target_kb)
                    small = await self.image_ops.compress(
                        crop, cfg.preview_max_width, cfg.preview_max_height, cfg.preview_quality
                    )
                    transmit, preview_bytes = compression.data, small.data
                except ImageOperationError as e:
                    compression = None
                    self._fallback_or_fail("compress", e, recorder, preview_id)

        path = self.history.preview_path(preview_id)
        with recorder.stage("persist"):
            try:
                await self.storage.write_file(path, preview_bytes)
            except OSError as e:
                raise self._fail("persist", f"cannot write preview: {e}", recorder, preview_id) from e
            preview = CropPreview(id=preview_id, image_path=str(path), created_at=self._clock())
            self.history.append(preview)

        timings = recorder.timings()
        self._last_timings = timings
        logger.info(
            f"Pipeline finished for {preview_id} in {timings.total_ms:.1f} ms "
            + " ".join(f"{k}={v:.1f}" for k, v in timings.as_dict().items() if k != "total")
        )

        payload = base64.b64encode(transmit).decode("ascii")
        return PipelineResult(preview=preview, payload=payload, timings=timings, compression=compression)

    def _crop_region(self, frame: Frame, boxes: Sequence[FaceBox], flipped: bool):
        largest = select_largest_face(boxes)
        if largest is None:
            return None
        if flipped:
            largest = mirror_box(largest, frame.width)
        return padded_crop_region(largest, frame.width, frame.height, self.config.crop_margin)

    def _fallback_or_fail(self, stage: str, error: ImageOperationError,
                          recorder: StageRecorder, preview_id: str) -> None:
        if error.code == "OOM_ERROR":
            raise self._fail(stage, str(error), recorder, preview_id, code=error.code) from error
        logger.warning(f"Stage '{stage}' failed, continuing with previous output: {error}")

    def _fail(self, stage: str, message: str, recorder: StageRecorder, preview_id: str,
              code: Optional[str] = None) -> PipelineError:
        timings = recorder.timings()
        self._last_timings = timings

        preview = CropPreview(
            id=preview_id,
            image_path=None,
            created_at=self._clock(),
            status=CropStatus.NOT_RECOGNIZED,
            error_message=f"{stage}: {message}",
        )
        self.history.append(preview)
        logger.error(f"Pipeline stage '{stage}' failed for {preview_id}: {message}")
        return PipelineError(stage, message, timings=timings, preview=preview, code=code)
