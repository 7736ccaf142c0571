"""Stratum pool session: connection lifecycle and height tracking."""

from __future__ import annotations

import asyncio
import errno
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, assert_never

from loguru import logger

from stratum_height_monitor.config.models import SessionConfig
from stratum_height_monitor.monitor.constants import (
    DISCONNECT_TIMEOUT,
    MAX_LINE_SIZE,
    MAX_LOGGED_LINE_LENGTH,
)
from stratum_height_monitor.monitor.events import HeightChangedEvent
from stratum_height_monitor.monitor.height import ExtractionError, HeightExtractor, extract_height
from stratum_height_monitor.monitor.utils import truncate
from stratum_height_monitor.stratum.messages import (
    AuthorizeReply,
    DecodedMessage,
    NotifyPayload,
    SetDifficulty,
    SubscribeReply,
    UnrecognizedEnvelope,
)
from stratum_height_monitor.stratum.protocol import (
    EncodingError,
    ProtocolDecodeError,
    StratumProtocol,
)

if TYPE_CHECKING:
    from stratum_height_monitor.config.models import StratumEndpointConfig
    from stratum_height_monitor.monitor.dispatcher import NotificationDispatcher


class TransportError(Exception):
    """Dial, read or write failure on the pool connection."""

    pass


class SessionState(str, Enum):
    """Lifecycle states of a pool session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    LISTENING = "listening"
    # Reconnect retries exhausted; the endpoint is no longer monitored
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class Connection:
    """A live pool socket and its buffered line reader."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter

    async def close(self) -> None:
        """Close the socket, bounded by DISCONNECT_TIMEOUT."""
        self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=DISCONNECT_TIMEOUT)
        except (asyncio.TimeoutError, OSError):
            pass


def _describe_os_error(e: OSError) -> str:
    """Map common dial failures to a readable reason."""
    if e.errno == errno.ECONNREFUSED:
        return "connection refused (is the pool server running?)"
    if e.errno == errno.EHOSTUNREACH:
        return "host unreachable (check network connectivity)"
    if e.errno == errno.ENETUNREACH:
        return "network unreachable (check network configuration)"
    if "name or service not known" in str(e).lower() or "getaddrinfo failed" in str(e).lower():
        return f"DNS resolution failed: {e}"
    return str(e) or type(e).__name__


class PoolHeightSession:
    """
    Watches one stratum endpoint and reports block height changes.

    State machine:
        DISCONNECTED -> CONNECTING -> HANDSHAKING -> LISTENING
        LISTENING -> DISCONNECTED on any read failure, then a bounded
        reconnect; FAILED once the reconnect retries are exhausted.

    The read loop is the only code that touches the connection, the
    correlation state and the height, so none of them are locked. Height
    changes are handed to the dispatcher, which delivers them in background
    tasks; the read loop never waits for delivery.
    """

    def __init__(
        self,
        endpoint: StratumEndpointConfig,
        dispatcher: NotificationDispatcher,
        settings: Optional[SessionConfig] = None,
        extractor: HeightExtractor = extract_height,
        open_connection: Optional[Callable] = None,
    ):
        """
        Initialize the session.

        Args:
            endpoint: The pool to monitor.
            dispatcher: Receives height-change events.
            settings: Retry and timeout settings.
            extractor: Height derivation policy.
            open_connection: Replacement for asyncio.open_connection.
        """
        self.endpoint = endpoint
        self.name = endpoint.name
        self.settings = settings or SessionConfig()
        self._dispatcher = dispatcher
        self._extractor = extractor
        self._open_connection = open_connection or asyncio.open_connection

        self._connection: Optional[Connection] = None
        self._protocol = StratumProtocol()
        self._state = SessionState.DISCONNECTED
        self._height = 0

        # Handshake results, kept for observability only
        self.subscribed = False
        self.authorized = False
        self.extranonce1: Optional[str] = None
        self.extranonce2_size: Optional[int] = None
        self.difficulty: Optional[float] = None

        self.dial_attempts = 0
        self.reconnect_count = 0

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    @property
    def height(self) -> int:
        """Last observed height (0 until the first job is parsed)."""
        return self._height

    @property
    def connected(self) -> bool:
        """Check if a pool connection is open."""
        return self._connection is not None

    @property
    def handshake_complete(self) -> bool:
        """Check if both subscribe and authorize were acknowledged."""
        return self.subscribed and self.authorized

    @property
    def failed(self) -> bool:
        """Check if the session gave up reconnecting."""
        return self._state is SessionState.FAILED

    async def run(self) -> SessionState:
        """
        Monitor the endpoint until cancelled or reconnects are exhausted.

        Returns:
            The terminal state (FAILED); cancellation propagates as usual.
        """
        logger.info(f"Starting height monitor for {self.name} ({self.endpoint.address})")
        try:
            await self.connect()
            while True:
                try:
                    await self._handshake()
                    await self._listen()
                except TransportError as e:
                    logger.warning(f"Connection to {self.name} lost: {e}")

                await self._close_connection()
                self._state = SessionState.DISCONNECTED
                await asyncio.sleep(self.settings.read_error_delay)

                if not await self.reconnect():
                    logger.error(
                        f"Giving up on {self.name} after "
                        f"{self.settings.reconnect_max_retries + 1} failed reconnect attempts; "
                        f"endpoint is no longer monitored"
                    )
                    return self._state
        except asyncio.CancelledError:
            self._state = SessionState.STOPPED
            raise
        finally:
            await self._close_connection()

    async def connect(self) -> None:
        """Dial until a connection is established (initial start)."""
        attempt = 0
        while True:
            try:
                self._connection = await self._dial()
                return
            except TransportError as e:
                attempt += 1
                # INFO for the first few attempts to avoid log spam on a brief outage
                log = logger.info if attempt <= 2 else logger.warning
                log(
                    f"Connection to {self.name} failed: {e} (attempt {attempt}), "
                    f"retrying in {self.settings.initial_retry_interval:g}s"
                )
                self._state = SessionState.DISCONNECTED
                await asyncio.sleep(self.settings.initial_retry_interval)

    async def reconnect(self) -> bool:
        """
        Dial again after a disconnect with a bounded number of retries.

        Returns:
            True if connected, False if every attempt failed (state FAILED).
        """
        max_attempts = self.settings.reconnect_max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                self._connection = await self._dial()
                self.reconnect_count += 1
                return True
            except TransportError as e:
                logger.warning(
                    f"Reconnect to {self.name} failed: {e} (attempt {attempt}/{max_attempts})"
                )
                if attempt < max_attempts:
                    self._state = SessionState.DISCONNECTED
                    await asyncio.sleep(self.settings.reconnect_retry_interval)

        self._state = SessionState.FAILED
        return False

    async def _dial(self) -> Connection:
        """
        Open a new connection, discarding any previous one.

        Raises:
            TransportError: If the dial fails or times out.
        """
        await self._close_connection()
        self._state = SessionState.CONNECTING
        self.dial_attempts += 1
        logger.info(f"Connecting to {self.name} ({self.endpoint.address})")
        try:
            reader, writer = await asyncio.wait_for(
                self._open_connection(
                    self.endpoint.host, self.endpoint.port, limit=MAX_LINE_SIZE
                ),
                timeout=self.endpoint.timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"timed out after {self.endpoint.timeout}s") from e
        except OSError as e:
            raise TransportError(_describe_os_error(e)) from e

        logger.info(f"Connected to {self.name}")
        return Connection(reader=reader, writer=writer)

    async def _handshake(self) -> None:
        """
        Send mining.subscribe and mining.authorize back-to-back.

        Replies are not awaited here; the read loop handles them as they
        arrive, interleaved with job notifications.
        """
        self._state = SessionState.HANDSHAKING
        self._protocol.reset()
        self.subscribed = False
        self.authorized = False

        try:
            subscribe = self._protocol.build_subscribe(self.settings.user_agent)
        except EncodingError as e:
            logger.error(f"Dropping subscribe request for {self.name}: {e}")
        else:
            await self._send(subscribe)

        try:
            authorize = self._protocol.build_authorize(
                self.endpoint.username, self.endpoint.password
            )
        except EncodingError as e:
            logger.error(f"Dropping authorize request for {self.name}: {e}")
        else:
            await self._send(authorize)

    async def _send(self, data: bytes) -> None:
        """
        Write one frame to the pool.

        Raises:
            TransportError: If not connected or the write fails.
        """
        if self._connection is None:
            raise TransportError("Not connected")
        logger.bind(traffic=True).debug(f"Sending to {self.name}: {data.decode().strip()}")
        try:
            self._connection.writer.write(data)
            await asyncio.wait_for(
                self._connection.writer.drain(), timeout=self.settings.write_timeout
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"Send timeout to {self.name}") from e
        except OSError as e:
            raise TransportError(f"Send error: {e}") from e

    async def _listen(self) -> None:
        """Read and process lines until the connection fails."""
        self._state = SessionState.LISTENING
        logger.debug(f"Listening on {self.name}")
        while True:
            line = await self._read_line()
            self.process_line(line)

    async def _read_line(self) -> bytes:
        """
        Read one newline-terminated line.

        Raises:
            TransportError: On EOF, I/O errors, or a line over MAX_LINE_SIZE
                (framing cannot be recovered after the reader drops data).
        """
        if self._connection is None:
            raise TransportError("Not connected")
        try:
            line = await self._connection.reader.readline()
        except ValueError as e:
            raise TransportError(f"Line exceeds {MAX_LINE_SIZE} bytes: {e}") from e
        except OSError as e:
            raise TransportError(f"Read error: {e}") from e
        if not line:
            raise TransportError("Connection closed by pool (EOF)")
        return line

    def process_line(self, line: bytes) -> None:
        """Decode one line and route it. Decode errors skip the line."""
        logger.bind(traffic=True).debug(
            f"Received from {self.name}: "
            f"{truncate(line.decode('utf-8', errors='replace').strip(), MAX_LOGGED_LINE_LENGTH)}"
        )
        try:
            message = self._protocol.decode(line)
        except ProtocolDecodeError as e:
            logger.warning(f"Failed to decode message from {self.name}: {e}")
            return
        self._handle_message(message)

    def _handle_message(self, message: DecodedMessage) -> None:
        if isinstance(message, NotifyPayload):
            self._handle_notify(message)
        elif isinstance(message, SubscribeReply):
            self._handle_subscribe_reply(message)
        elif isinstance(message, AuthorizeReply):
            self._handle_authorize_reply(message)
        elif isinstance(message, SetDifficulty):
            self.difficulty = message.difficulty
            logger.info(f"Stratum difficulty for {self.name} set to {message.formatted}")
        elif isinstance(message, UnrecognizedEnvelope):
            logger.debug(f"Unhandled message from {self.name}: method={message.method}")
        else:
            assert_never(message)

    def _handle_subscribe_reply(self, reply: SubscribeReply) -> None:
        self.subscribed = True
        self.extranonce1 = reply.extranonce1
        self.extranonce2_size = reply.extranonce2_size
        logger.info(
            f"Subscribed to {self.name}: extranonce1={reply.extranonce1}, "
            f"extranonce2_size={reply.extranonce2_size}"
        )

    def _handle_authorize_reply(self, reply: AuthorizeReply) -> None:
        if reply.is_error:
            logger.error(
                f"Authorize failed for {self.name}: [{reply.error_code}] {reply.error_message}"
            )
        elif not reply.success:
            logger.error(f"Authorization rejected by {self.name}")
        else:
            self.authorized = True
            logger.info(f"Authorized with {self.name} as {self.endpoint.username}")

    def _handle_notify(self, payload: NotifyPayload) -> None:
        try:
            height = self._extractor(self.endpoint.coin_type, payload)
        except (ExtractionError, ValueError, TypeError, KeyError, IndexError, OverflowError) as e:
            logger.error(f"Failed to parse height from {self.name} job {payload.job_id}: {e}")
            return
        if not isinstance(height, int) or isinstance(height, bool) or height < 0:
            logger.error(f"Invalid height {height!r} from {self.name} job {payload.job_id}")
            return

        if height != self._height:
            event = HeightChangedEvent(
                endpoint=self.endpoint,
                old_height=self._height,
                new_height=height,
            )
            logger.info(f"{self.name} height: {height}, old height: {self._height}")
            self._dispatcher.dispatch(event)
        self._height = height

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()
            logger.info(f"Disconnected from {self.name}")
