"""
UPDI Physical Layer
===================

This module makes every UPDI exchange look atomic over a half-duplex,
echo-producing channel. It handles:

- Opening the transport in the operating frame format (8E2)
- Echo consumption after every transmission
- Reads that treat silence as an unresponsive target
- The double-break resynchronisation sequence
- Trace hooks for every frame sent and received

Half-Duplex Echo
----------------
TX and RX share one wire, so every byte written comes straight back on
RX. send() reads back exactly as many bytes as it wrote before it
returns. Skipping this would leave the echo in the input buffer, where
the next receive() would mistake it for the target's answer.

Double Break
------------
A break is a low period longer than one full character. Sending 0x00 at
300 baud holds the line low for ~30 ms, well beyond the 12-bit break
threshold at any operating baud rate. Two breaks 100 ms apart force the
target's UPDI back into a known idle state:

    close → open 300 8E1 → 0x00 → wait 100 ms → 0x00 → close → open baud 8E2

Link States
-----------
    CLOSED ──open()──▶ OPENED ──send_double_break()──▶ SYNCHRONIZED
       ▲                                                    │
       └──────────────────────close()───────────────────────┘
"""

import logging
import time
from enum import Enum
from typing import Callable, Final, Optional

from updi_link.comms.constants import (
    UPDI_BREAK,
    UPDI_BREAK_BAUD,
    UPDI_DEFAULT_BAUD,
    UPDI_KEY,
    UPDI_KEY_SIB,
    UPDI_PHY_SYNC,
    UPDI_SIB_LENGTH,
    SibSize,
)
from updi_link.comms.transport import FrameFormat, Transport
from updi_link.errors import NoResponseError, Stage, TransportError

# Configure module logger
logger = logging.getLogger(__name__)

# Observer invoked with ("send" | "receive", data) at each trace point
TraceCallback = Callable[[str, bytes], None]


class LinkState(Enum):
    """Lifecycle of the physical channel."""

    CLOSED = "closed"
    OPENED = "opened"
    SYNCHRONIZED = "synchronized"


def _hex(data: bytes) -> str:
    return data.hex(" ") if data else "-"


class UpdiPhysical:
    """
    UPDI physical layer over a Transport.

    Owns the transport, the operating baud rate and the channel state.
    Nothing else writes to the transport.

    Usage:
        phy = UpdiPhysical(SerialTransport('/dev/ttyUSB0'), baudrate=230400)
        phy.open()
        phy.send_double_break()
        phy.send(bytes([0x55, 0x80]))
        status = phy.receive(1)
        phy.close()
    """

    # Target-side break detection settle time (seconds)
    BREAK_SETTLE_TIME: Final[float] = 0.1

    def __init__(
        self,
        transport: Transport,
        baudrate: int = UPDI_DEFAULT_BAUD,
        trace: Optional[TraceCallback] = None,
    ):
        """
        Args:
            transport: Channel to the target. Not configured yet.
            baudrate: Operating baud rate used after every (re)open.
            trace: Optional observer called with every frame sent/received.
        """
        self.transport = transport
        self._baudrate = baudrate
        self._trace = trace
        self._state = LinkState.CLOSED

    @property
    def baudrate(self) -> int:
        """Operating baud rate."""
        return self._baudrate

    @property
    def state(self) -> LinkState:
        """Current channel state."""
        return self._state

    # -------------------------------------------------------------------------
    # Channel Management
    # -------------------------------------------------------------------------

    def open(
        self,
        baudrate: Optional[int] = None,
        frame_format: FrameFormat = FrameFormat.SERIAL_8E2,
    ) -> None:
        """
        Configure the transport and discard any stale input.

        Args:
            baudrate: Baud rate to open at (default: operating baud rate).
            frame_format: Serial framing (default: 8E2).

        Raises:
            TransportError: If the channel cannot be configured.
        """
        if baudrate is None:
            baudrate = self._baudrate

        logger.debug("Opening transport at %d baud %s", baudrate, frame_format)
        self.transport.configure(baudrate, frame_format)
        self.transport.drain()
        self._state = LinkState.OPENED

    def close(self) -> None:
        """
        Release the transport.

        Safe to call in any state; errors are logged, never raised.
        """
        try:
            self.transport.close()
        except Exception as e:
            logger.warning("Error closing transport: %s", e)
        self._state = LinkState.CLOSED

    # -------------------------------------------------------------------------
    # Byte I/O
    # -------------------------------------------------------------------------

    def send(self, data: bytes) -> int:
        """
        Send bytes and consume their half-duplex echo.

        Args:
            data: Bytes to transmit.

        Returns:
            Number of bytes the transport reports written.

        Raises:
            TransportError: If the link is closed or the write fails.
        """
        data = bytes(data)
        if self._state is LinkState.CLOSED:
            raise TransportError("link is not open", stage=Stage.SEND)

        logger.debug("send %d bytes: %s", len(data), _hex(data))
        if self._trace is not None:
            self._trace("send", data)

        written = self.transport.send(data)
        echo = self.transport.receive(len(data))
        if len(echo) != len(data):
            logger.warning(
                "Echo length mismatch: sent %d bytes, read back %d",
                len(data), len(echo)
            )
        return written

    def receive(self, count: int) -> bytes:
        """
        Read up to count bytes from the target.

        A short result is returned as-is; callers check the length they
        need. Silence is treated as an unresponsive target.

        Args:
            count: Number of bytes to read.

        Returns:
            Bytes received (at least one when count > 0).

        Raises:
            NoResponseError: If nothing arrived or the read failed.
            TransportError: If the link is closed.
        """
        if self._state is LinkState.CLOSED:
            raise TransportError("link is not open", stage=Stage.RECEIVE)

        try:
            data = self.transport.receive(count)
        except TransportError as e:
            raise NoResponseError(
                f"target is not responding ({e.message})", expected=count
            ) from e

        if count > 0 and not data:
            logger.debug("receive: no response (expected %d bytes)", count)
            raise NoResponseError(
                f"target is not responding (expected {count} byte(s))",
                expected=count,
            )

        logger.debug("receive %d bytes: %s", len(data), _hex(data))
        if self._trace is not None:
            self._trace("receive", data)
        return data

    # -------------------------------------------------------------------------
    # Resynchronisation
    # -------------------------------------------------------------------------

    def send_double_break(self) -> None:
        """
        Force the target's UPDI into a known state.

        Reopens at 300 baud 8E1, transmits two break characters 100 ms
        apart (discarding each echo), then reopens at the operating baud
        rate with 8E2 framing.

        Raises:
            TransportError: If either reopen fails.
        """
        logger.info("Sending double break")

        self.close()
        self.open(UPDI_BREAK_BAUD, FrameFormat.SERIAL_8E1)

        self._send_break()
        time.sleep(self.BREAK_SETTLE_TIME)
        self._send_break()

        self.close()
        self.open(self._baudrate, FrameFormat.SERIAL_8E2)
        self._state = LinkState.SYNCHRONIZED

    def _send_break(self) -> None:
        # The echo of a break is usually a framing error; its value is irrelevant
        self.transport.send(bytes([UPDI_BREAK]))
        self.transport.receive(1)

    # -------------------------------------------------------------------------
    # System Information Block
    # -------------------------------------------------------------------------

    def sib(self, size: int = UPDI_SIB_LENGTH) -> bytes:
        """
        Read the System Information Block.

        Args:
            size: SIB length: 8, 16 or 32 bytes (default 32). The size class
                in the request matches it so no bytes are left unread.

        Returns:
            Raw SIB bytes, unparsed.

        Raises:
            InvalidArgumentError: If size is not 8, 16 or 32.
        """
        size_class = SibSize.from_length(size)
        self.send(bytes([UPDI_PHY_SYNC, UPDI_KEY | UPDI_KEY_SIB | size_class]))
        return self.receive(size)
