"""Unit tests for NotificationService."""
from unittest.mock import Mock, patch

from facecheck.core.entities import SoundEvent
from facecheck.services.notification_service import NotificationService


class TestNotificationService:
    """Test suite for NotificationService."""

    def test_custom_callback(self):
        """Test registered callbacks are used for their event."""
        service = NotificationService()
        recognized = Mock()
        service.set_sound_callback(SoundEvent.RECOGNIZED, recognized)

        service.play(SoundEvent.RECOGNIZED)

        recognized.assert_called_once()

    def test_disabled(self):
        """Test nothing plays while sound is disabled."""
        service = NotificationService(sound_enabled=False)
        callback = Mock()
        service.set_sound_callback(SoundEvent.NOT_RECOGNIZED, callback)

        service.play(SoundEvent.NOT_RECOGNIZED)
        callback.assert_not_called()

        service.enable_sound()
        service.play(SoundEvent.NOT_RECOGNIZED)
        callback.assert_called_once()

    def test_callback_failure_is_contained(self):
        """Test a failing callback never raises."""
        service = NotificationService()
        service.set_sound_callback(SoundEvent.ERROR, Mock(side_effect=RuntimeError("no device")))

        service.play(SoundEvent.ERROR)

    @patch('facecheck.services.notification_service.sys')
    def test_terminal_bell_fallback(self, mock_sys):
        """Test the terminal bell is used on a tty without callbacks."""
        mock_sys.platform = 'linux'
        mock_sys.stdout.isatty.return_value = True

        NotificationService().play(SoundEvent.RECOGNIZED)

        mock_sys.stdout.write.assert_called_once_with('\a')

    @patch('facecheck.services.notification_service.sys')
    def test_no_tty(self, mock_sys):
        """Test nothing is written when stdout is not a terminal."""
        mock_sys.platform = 'linux'
        mock_sys.stdout.isatty.return_value = False

        NotificationService().play(SoundEvent.RECOGNIZED)

        mock_sys.stdout.write.assert_not_called()
