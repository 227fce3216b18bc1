"""Main entry point for the face capture and recognition client."""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from facecheck.config.settings import Config, load_config
from facecheck.core.entities import ConnectionState, CropPreview, OverlayState, RecognitionState
from facecheck.core.logging_config import configure_logging
from facecheck.core.performance import PerformanceMonitor, get_system_metrics
from facecheck.services.crop_history import CropHistoryStore, PreviewSweeper
from facecheck.services.face_detector import FaceDetectionService
from facecheck.services.image_operations import OpenCVImageOperations
from facecheck.services.image_pipeline import ImageProcessingPipeline
from facecheck.services.network_session import RecognitionSession
from facecheck.services.notification_service import NotificationService
from facecheck.services.recognition_state import RecognitionStateMachine
from facecheck.services.scheduler import DetectionScheduler
from facecheck.services.webcam_service import WebcamService
from facecheck.utils.file_utils import LocalFileStorage
from facecheck.utils.geometry import ensure_dirs

logger = logging.getLogger(__name__)


def setup_directories(config: Config):
    """Ensure required directories exist."""
    ensure_dirs(config.cache_dir, config.log_dir)


def build_scheduler(config: Config, session: Optional[RecognitionSession] = None) -> DetectionScheduler:
    """Wire the component graph for ``config``."""
    storage = LocalFileStorage()
    history = CropHistoryStore(
        storage,
        config.cache_dir,
        capacity=config.history_capacity,
        preview_prefix=config.preview_prefix,
    )
    state_machine = RecognitionStateMachine(
        cooldown=config.cooldown_ms / 1000.0,
        dwell_recognized=config.dwell_recognized_ms / 1000.0,
        dwell_not_recognized=config.dwell_not_recognized_ms / 1000.0,
    )
    pipeline = ImageProcessingPipeline(
        OpenCVImageOperations(default_quality=config.image_quality),
        storage,
        history,
        config,
    )
    return DetectionScheduler(
        camera=WebcamService(config),
        detector=FaceDetectionService(config),
        pipeline=pipeline,
        session=session or RecognitionSession.from_config(config),
        state_machine=state_machine,
        history=history,
        notifier=NotificationService(sound_enabled=config.sound_enabled),
        config=config,
    )


def _log_history(entries):
    if not entries:
        return
    latest: CropPreview = entries[0]
    if latest.is_final:
        who = latest.person_name or "-"
        logger.info(f"Latest crop {latest.id}: {latest.status.value} ({who})"
                    + (f" error={latest.error_message}" if latest.error_message else ""))


def _log_state(old: RecognitionState, new: RecognitionState):
    logger.debug(f"Recognition state: {old.value} -> {new.value}")


def _log_connection(old: ConnectionState, new: ConnectionState):
    logger.info(f"Recognition service {new.value}")


def _log_overlay(overlay: OverlayState):
    if overlay.face_count:
        logger.debug(f"{overlay.face_count} face(s) on screen, largest {overlay.largest_rect}")


async def run(config: Config) -> None:
    """Run the detection loop until cancelled."""
    scheduler = build_scheduler(config)
    sweeper = PreviewSweeper(
        scheduler.history,
        interval=config.sweep_interval_seconds,
        max_age=config.preview_retention_seconds,
    )

    scheduler.history.add_listener(_log_history)
    scheduler.state_machine.add_listener(_log_state)
    scheduler.session.add_connection_listener(_log_connection)
    scheduler.add_overlay_listener(_log_overlay)

    await scheduler.session.start()
    sweeper.start()
    try:
        await scheduler.start()
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
        await sweeper.stop()
        await scheduler.session.stop()
        scheduler.shutdown()
        for service in (scheduler.camera, scheduler.detector, scheduler.session, scheduler):
            metrics = service.get_metrics()
            logger.info(
                f"{metrics['service_name']}: {metrics['total_operations']} operations, "
                f"success rate {metrics['success_rate']:.0%}"
            )
        stats = PerformanceMonitor.instance().get_all_stats()
        for name in ("pipeline.read", "pipeline.compress", "network.round_trip", "scheduler.cycle"):
            if stats.get(name):
                logger.info(
                    f"{name}: avg {stats[name]['avg'] * 1000:.1f} ms, "
                    f"p95 {stats[name]['p95'] * 1000:.1f} ms over {stats[name]['count']}"
                )
        metrics = get_system_metrics()
        logger.info(f"Process memory at exit: {metrics.memory_usage_mb:.1f} MB")


def main(argv=None) -> int:
    """Application entry point."""
    parser = argparse.ArgumentParser(description="Detect faces and check them against a recognition service")
    parser.add_argument("--config", default="config.json", help="Path to config.json")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    args = parser.parse_args(argv)

    config = load_config(args.config, env_file=args.env_file)
    setup_directories(config)
    configure_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        enable_file_logging=config.enable_file_logging,
        structured_logging=config.structured_logging,
    )
    logger.info(f"Starting facecheck against {config.recognition_url}")

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception:
        logger.exception("Fatal error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
