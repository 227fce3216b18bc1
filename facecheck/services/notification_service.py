"""Audible feedback for recognition results.

Sounds are fire-and-forget: failures are logged and never reach the
detection loop.
"""
from __future__ import annotations

import logging
import sys
from typing import Callable, Dict

from ..core.entities import SoundEvent

logger = logging.getLogger(__name__)


class NotificationService:
    """Plays a sound per ``SoundEvent``.

    Custom callbacks registered with ``set_sound_callback`` take precedence;
    otherwise Windows system sounds are used, or the terminal bell elsewhere.
    """

    def __init__(self, sound_enabled: bool = True):
        self.sound_enabled = sound_enabled
        self.sound_callbacks: Dict[SoundEvent, Callable[[], None]] = {}

    def play(self, event: SoundEvent) -> None:
        """Play sound for event."""
        if not self.sound_enabled:
            return

        if event in self.sound_callbacks:
            try:
                self.sound_callbacks[event]()
            except Exception as e:
                logger.warning(f"Sound callback for {event.value} failed: {e}")
            return

        # Fallback to system sounds
        try:
            if sys.platform == 'win32':
                import winsound
                if event is SoundEvent.RECOGNIZED:
                    winsound.MessageBeep(winsound.MB_OK)
                elif event is SoundEvent.NOT_RECOGNIZED:
                    winsound.MessageBeep(winsound.MB_ICONEXCLAMATION)
                else:
                    winsound.MessageBeep(winsound.MB_ICONHAND)
            elif sys.stdout is not None and sys.stdout.isatty():
                sys.stdout.write('\a')
                sys.stdout.flush()
        except (OSError, RuntimeError) as e:
            logger.debug(f"System sound for {event.value} failed: {e}")

    def set_sound_callback(self, event: SoundEvent, callback: Callable[[], None]) -> None:
        """Set custom sound callback for an event."""
        self.sound_callbacks[event] = callback

    def enable_sound(self, enabled: bool = True) -> None:
        """Enable or disable sound notifications."""
        self.sound_enabled = enabled
