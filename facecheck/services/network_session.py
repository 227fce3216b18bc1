"""Persistent, auto-reconnecting session with the recognition endpoint.

At most one request is outstanding at a time. The session remembers when
it was sent and which crop preview it belongs to, so every inbound result
can be correlated with its preview and timed.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..core.base_service import BaseService
from ..core.entities import ConnectionState, CropStatus, PendingRequest, RecognitionOutcome
from ..core.exceptions import (
    MalformedResponseError, NetworkError, RequestPendingError, SessionNotConnectedError,
)
from ..core.performance import PerformanceMonitor
from .recognition_protocol import (
    DEFAULT_UNKNOWN_IDENTITIES, build_check_image_message, parse_response,
)

ResultListener = Callable[[RecognitionOutcome], None]
ErrorListener = Callable[[Optional[str], Exception], None]
ConnectionListener = Callable[[ConnectionState, ConnectionState], None]


class RecognitionSession(BaseService):
    """WebSocket client for the recognition service.

    Args:
        url: ``ws://`` or ``wss://`` endpoint
        connector: ``connector(url)`` returning an awaitable connection with
            ``send``, ``recv`` and ``close``; ``websockets.connect`` by default
        reconnect_interval: Seconds before the first reconnect attempt
        max_reconnect_interval: Upper bound for the reconnect delay
        reconnect_decay: Growth factor of the delay per consecutive failure
        connect_timeout: Seconds allowed for one connection attempt
        max_reconnect_attempts: Consecutive failures before giving up; None retries forever
        clock: Monotonic time source used for latency
    """

    def __init__(self, url: str, connector: Callable = None,
                 reconnect_interval: float = 1.0, max_reconnect_interval: float = 30.0,
                 reconnect_decay: float = 1.5, connect_timeout: float = 2.0,
                 max_reconnect_attempts: Optional[int] = None,
                 message_marker: str = "client", message_terminator: str = "end",
                 unknown_identities: Iterable[str] = DEFAULT_UNKNOWN_IDENTITIES,
                 clock: Callable[[], float] = time.monotonic, config=None):
        super().__init__(config=config, service_name="RecognitionSession")
        self.url = url
        self._connector = connector or websockets.connect
        self.reconnect_interval = reconnect_interval
        self.max_reconnect_interval = max_reconnect_interval
        self.reconnect_decay = reconnect_decay
        self.connect_timeout = connect_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self.message_marker = message_marker
        self.message_terminator = message_terminator
        self.unknown_identities = tuple(unknown_identities)
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._connection = None
        self._pending: Optional[PendingRequest] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._attempt = 0
        self._connected_event: Optional[asyncio.Event] = None

        self._result_listeners: List[ResultListener] = []
        self._error_listeners: List[ErrorListener] = []
        self._connection_listeners: List[ConnectionListener] = []

        self._messages_sent = 0
        self._messages_received = 0
        self._late_results = 0

    @classmethod
    def from_config(cls, config, **kwargs) -> 'RecognitionSession':
        """Build a session from ``Config`` values (milliseconds converted to seconds)."""
        return cls(
            url=config.recognition_url,
            reconnect_interval=config.reconnect_interval_ms / 1000.0,
            max_reconnect_interval=config.max_reconnect_interval_ms / 1000.0,
            reconnect_decay=config.reconnect_decay,
            connect_timeout=config.connect_timeout_ms / 1000.0,
            max_reconnect_attempts=config.max_reconnect_attempts,
            message_marker=config.message_marker,
            message_terminator=config.message_terminator,
            unknown_identities=config.unknown_identities,
            config=config,
            **kwargs,
        )

    def _initialize(self) -> None:
        pass

    def _shutdown(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _get_health_details(self) -> Dict[str, Any]:
        details = super()._get_health_details()
        details.update({
            'connection_state': self._state.value,
            'pending_request': self._pending is not None,
            'messages_sent': self._messages_sent,
            'messages_received': self._messages_received,
            'late_results': self._late_results,
            'reconnect_attempt': self._attempt,
        })
        return details

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._connection is not None

    @property
    def pending(self) -> Optional[PendingRequest]:
        return self._pending

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def add_result_listener(self, listener: ResultListener) -> None:
        self._result_listeners.append(listener)

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register ``listener(request_id, error)``; request_id is None when no request was pending."""
        self._error_listeners.append(listener)

    def add_connection_listener(self, listener: ConnectionListener) -> None:
        self._connection_listeners.append(listener)

    def next_delay(self, attempt: int) -> float:
        """Reconnect delay after ``attempt`` consecutive failures."""
        delay = self.reconnect_interval * (self.reconnect_decay ** attempt)
        return min(delay, self.max_reconnect_interval)

    async def start(self) -> None:
        """Launch the connect/receive loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self.initialize()
        self._stopping = False
        self._connected_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="recognition-session")
        self._set_running(True)

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        self._stopping = True
        connection = self._connection
        if connection is not None:
            try:
                await connection.close()
            except (OSError, WebSocketException) as e:
                self.logger.debug(f"Error closing connection: {e}")
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._pending = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._set_running(False)

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until the session is connected. Returns False on timeout."""
        if self.is_connected:
            return True
        if self._connected_event is None:
            return False
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_connected

    def reset(self) -> None:
        """Drop the outstanding request without waiting for its result."""
        if self._pending is not None:
            self.logger.info(f"Clearing pending request {self._pending.crop_preview_id}")
        self._pending = None

    async def send(self, payload: str, crop_preview_id: str) -> PendingRequest:
        """Submit an image for recognition.

        Raises:
            SessionNotConnectedError: If the socket is not open
            RequestPendingError: If a request is already outstanding
            NetworkError: If transmission fails
        """
        if not self.is_connected:
            raise SessionNotConnectedError("Recognition service is not connected")
        if self._pending is not None:
            raise RequestPendingError(
                f"Request {self._pending.crop_preview_id} is still pending"
            )

        message = build_check_image_message(payload, self.message_marker, self.message_terminator)
        pending = PendingRequest(sent_at=self._clock(), crop_preview_id=crop_preview_id)
        self._pending = pending

        with self.operation_context("send"):
            try:
                await self._connection.send(message)
            except (ConnectionClosed, OSError) as e:
                if self._pending is pending:
                    self._pending = None
                raise NetworkError(f"Failed to send recognition request: {e}") from e

        self._messages_sent += 1
        self.logger.info(f"Sent recognition request {crop_preview_id} ({len(payload)} bytes payload)")
        return pending

    async def _run(self) -> None:
        self._attempt = 0
        while not self._stopping:
            self._set_state(ConnectionState.CONNECTING)
            try:
                connection = await asyncio.wait_for(self._connector(self.url), self.connect_timeout)
            except asyncio.CancelledError:
                raise
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                self._set_state(ConnectionState.DISCONNECTED)
                self.logger.warning(f"Connection to {self.url} failed: {e}")
            else:
                self._attempt = 0
                self._connection = connection
                self._set_state(ConnectionState.CONNECTED)
                self.logger.info(f"Connected to recognition service at {self.url}")
                try:
                    await self._receive_loop(connection)
                finally:
                    self._connection = None
                    self._set_state(ConnectionState.DISCONNECTED)
                    self._handle_connection_lost()
                if self._stopping:
                    break

            if self.max_reconnect_attempts is not None and self._attempt >= self.max_reconnect_attempts:
                self.logger.error(
                    f"Giving up on {self.url} after {self._attempt} failed reconnect attempts"
                )
                self._set_state(ConnectionState.FAILED)
                self._set_running(False)
                return

            delay = self.next_delay(self._attempt)
            self._attempt += 1
            self.logger.debug(f"Reconnecting in {delay:.2f}s (attempt {self._attempt})")
            await asyncio.sleep(delay)

    async def _receive_loop(self, connection) -> None:
        while True:
            try:
                message = await connection.recv()
            except ConnectionClosed as e:
                self.logger.warning(f"Connection closed: {e}")
                return
            except OSError as e:
                self.logger.warning(f"Connection error: {e}")
                return
            self._messages_received += 1
            self.handle_message(message)

    def handle_message(self, message) -> None:
        """Classify one inbound message and notify listeners."""
        try:
            response = parse_response(message, self.unknown_identities)
        except MalformedResponseError as e:
            pending = self._take_pending()
            self.logger.error(f"Malformed response from recognition service: {e}")
            self._notify_error(pending.crop_preview_id if pending else None, e)
            return

        if response.is_informational:
            self.logger.debug(f"Ignoring informational message: {response.raw}")
            return

        pending = self._take_pending()
        if pending is None:
            self._late_results += 1
            self.logger.info(f"Discarding response with no pending request: {response.raw}")
            return

        latency_s = self._clock() - pending.sent_at
        PerformanceMonitor.instance().record_operation_time("network.round_trip", latency_s)

        if not response.is_result:
            self.logger.error(f"Recognition service reported an error: {response.error}")
            self._notify_error(
                pending.crop_preview_id, NetworkError(f"Recognition service error: {response.error}")
            )
            return

        outcome = RecognitionOutcome(
            request_id=pending.crop_preview_id,
            status=response.status,
            person_name=response.name if response.status is CropStatus.RECOGNIZED else None,
            latency_ms=latency_s * 1000.0,
            error_message=response.error,
            raw=response.raw,
        )
        self.logger.info(
            f"Result for {outcome.request_id}: {outcome.status.value}"
            f" ({response.name}) in {outcome.latency_ms:.0f} ms"
        )
        for listener in list(self._result_listeners):
            try:
                listener(outcome)
            except Exception:
                self.logger.exception("Result listener failed")

    def _take_pending(self) -> Optional[PendingRequest]:
        pending, self._pending = self._pending, None
        return pending

    def _handle_connection_lost(self) -> None:
        pending = self._take_pending()
        if pending is not None and not self._stopping:
            self._notify_error(pending.crop_preview_id, NetworkError("connection lost"))

    def _notify_error(self, request_id: Optional[str], error: Exception) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(request_id, error)
            except Exception:
                self.logger.exception("Error listener failed")

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        if self._connected_event is not None:
            if new_state is ConnectionState.CONNECTED:
                self._connected_event.set()
            else:
                self._connected_event.clear()
        for listener in list(self._connection_listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                self.logger.exception("Connection listener failed")
