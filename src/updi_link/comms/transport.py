"""
Transport Adapter Contract
==========================

The link layer never touches a serial port directly. It talks to a
Transport: a synchronous, byte-oriented channel that can be
reconfigured between baud rates and frame formats.

Contract
--------
- configure(baudrate, frame_format): (re)open the channel with the given
  settings. Raises TransportError if the channel cannot be configured.
- send(data) -> int: write all bytes, return the number written.
- receive(count) -> bytes: read up to count bytes, blocking for at most
  the channel's read timeout. A short (or empty) result means the
  timeout expired. Raises TransportError on an I/O failure.
- drain(): discard any pending input.
- close(): release the channel. Must be safe to call repeatedly.

UPDI is half-duplex on a single wire, so everything sent is also
received. Consuming that echo is the Physical Framer's job, not the
transport's.

Implementations
---------------
- updi_link.comms.serial.SerialTransport: pyserial-backed
- updi_link.testkit.SimulatedTarget: in-memory target for tests
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Frame Formats
# =============================================================================

@dataclass(frozen=True)
class FrameSettings:
    """Character framing on the wire: data bits, parity and stop bits."""

    bytesize: int
    parity: str
    stopbits: int


class FrameFormat(Enum):
    """
    Serial frame formats used by UPDI.

    SERIAL_8E1 is only used while sending the double break. SERIAL_8E2 is
    the operating format; the second stop bit gives the target's UART a
    reliable idle boundary before each SYNC character.
    """

    SERIAL_8E1 = FrameSettings(bytesize=8, parity="E", stopbits=1)
    SERIAL_8E2 = FrameSettings(bytesize=8, parity="E", stopbits=2)

    @property
    def settings(self) -> FrameSettings:
        return self.value

    def __str__(self) -> str:
        s = self.value
        return f"{s.bytesize}{s.parity}{s.stopbits}"


# =============================================================================
# Transport Base Class
# =============================================================================

class Transport(ABC):
    """Abstract byte channel consumed by the UPDI Physical Framer."""

    @abstractmethod
    def configure(self, baudrate: int, frame_format: FrameFormat) -> None:
        """Open or reconfigure the channel."""

    @abstractmethod
    def send(self, data: bytes) -> int:
        """Write data and return the number of bytes written."""

    @abstractmethod
    def receive(self, count: int) -> bytes:
        """Read up to count bytes; short result means timeout."""

    @abstractmethod
    def drain(self) -> None:
        """Discard pending input."""

    @abstractmethod
    def close(self) -> None:
        """Release the channel."""

    @property
    def is_open(self) -> bool:
        """True while the channel is configured and usable."""
        return False
