"""
Serial Port Transport for UPDI
==============================

This module provides the pyserial-backed Transport used to reach a
target through a "SerialUPDI" adapter: a USB-serial converter whose TX
and RX lines are joined (usually through a resistor or diode) onto the
single UPDI pin. It handles:

- Port enumeration and detection
- Automatic detection of likely USB-serial adapters
- Switching between the break format (300 baud 8E1) and the operating
  format (8E2)

Hardware Requirements
---------------------
Any USB-serial adapter that tolerates 8E2 framing works. Because TX and
RX share the wire, every byte written is read back; the link layer
consumes that echo.

Recommended USB-Serial Adapters
-------------------------------
- WCH CH340/CH341-based adapters (cheap, reliable up to 230400 baud)
- FTDI FT232R-based adapters
- Silicon Labs CP210x-based adapters

Known Issues
------------
- Some CP2102 adapters cannot do 300 baud; the double break then fails
- Prolific PL2303 clones may drop the second stop bit
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from updi_link.comms.transport import FrameFormat, Transport
from updi_link.errors import Stage, TransportError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Default read timeout in seconds (per read call)
DEFAULT_TIMEOUT: Final[float] = 0.1

# USB Vendor IDs for common USB-serial adapters
# These are used for auto-detection of likely SerialUPDI adapters
USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x1A86: "QinHeng",    # QinHeng Electronics (CH340)
    0x0403: "FTDI",       # Future Technology Devices International
    0x10C4: "Silicon Labs",  # Silicon Labs CP210x
    0x067B: "Prolific",   # Prolific Technology (less reliable)
}

_PARITY: Final[dict[str, str]] = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
}

_STOPBITS: Final[dict[int, float]] = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    Information about an available serial port.

    Attributes:
        device: System device path (e.g., '/dev/ttyUSB0', 'COM3')
        description: Human-readable description from the driver
        manufacturer: Device manufacturer (if available)
        serial_number: Device serial number (if available)
        vid: USB Vendor ID (None for non-USB ports)
        pid: USB Product ID (None for non-USB ports)
    """

    device: str
    description: str
    manufacturer: Optional[str]
    serial_number: Optional[str]
    vid: Optional[int]
    pid: Optional[int]

    @property
    def is_usb(self) -> bool:
        """Return True if this is a USB-serial adapter."""
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        """Return the vendor name for known USB adapters."""
        if self.vid is not None:
            return USB_VENDOR_IDS.get(self.vid)
        return None

    def __str__(self) -> str:
        parts = [self.device]
        if self.description:
            parts.append(f"- {self.description}")
        if self.vendor_name:
            parts.append(f"({self.vendor_name})")
        return " ".join(parts)


# =============================================================================
# Port Enumeration
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """
    List all available serial ports on the system.

    Returns:
        List of PortInfo objects describing available ports.
    """
    ports = []

    for port in serial.tools.list_ports.comports():
        info = PortInfo(
            device=port.device,
            description=port.description or "",
            manufacturer=port.manufacturer,
            serial_number=port.serial_number,
            vid=port.vid,
            pid=port.pid,
        )
        ports.append(info)
        logger.debug(
            "Found port: %s (vid=%s, pid=%s)",
            port.device,
            f"{port.vid:04X}" if port.vid else "N/A",
            f"{port.pid:04X}" if port.pid else "N/A",
        )

    return ports


def find_updi_port() -> Optional[str]:
    """
    Attempt to auto-detect a SerialUPDI adapter.

    Detection Priority:
    1. CH340 adapters (the usual SerialUPDI build)
    2. FTDI adapters
    3. Silicon Labs CP210x adapters
    4. Any other USB-serial adapter

    Returns:
        Device path of the detected port, or None if not found.
    """
    usb_ports = [p for p in list_serial_ports() if p.is_usb]

    if not usb_ports:
        logger.debug("No USB serial ports found")
        return None

    for vid in (0x1A86, 0x0403, 0x10C4):
        for port in usb_ports:
            if port.vid == vid:
                logger.info(
                    "Auto-detected port: %s (%s)",
                    port.device, port.vendor_name
                )
                return port.device

    first_usb = usb_ports[0]
    logger.info(
        "Using first USB serial port: %s (%s)",
        first_usb.device, first_usb.description
    )
    return first_usb.device


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """
    Format a list of ports for display to the user.

    Args:
        ports: List of PortInfo objects to format.
        verbose: If True, include additional details.

    Returns:
        Formatted string with one port per line.
    """
    if not ports:
        return "No serial ports found."

    lines = []
    for port in ports:
        if verbose:
            line = f"  {port.device}"
            if port.description:
                line += f"\n    Description: {port.description}"
            if port.manufacturer:
                line += f"\n    Manufacturer: {port.manufacturer}"
            if port.vid is not None:
                line += f"\n    USB VID:PID: {port.vid:04X}:{port.pid or 0:04X}"
                if port.vendor_name:
                    line += f" ({port.vendor_name})"
            if port.serial_number:
                line += f"\n    Serial: {port.serial_number}"
            lines.append(line)
        else:
            lines.append(f"  {port}")

    return "\n".join(lines)


# =============================================================================
# Serial Transport
# =============================================================================

class SerialTransport(Transport):
    """
    Transport over a pyserial port.

    The port is opened lazily by the first configure() call and reopened
    by configure() after close(), which is how the double break switches
    between 300 baud 8E1 and the operating format.

    Usage:
        transport = SerialTransport('/dev/ttyUSB0')
        link = UpdiDatalink(transport)
        link.open()
    """

    def __init__(self, device: str, timeout: float = DEFAULT_TIMEOUT):
        self.device = device
        self.timeout = timeout
        self._port: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    def configure(self, baudrate: int, frame_format: FrameFormat) -> None:
        settings = frame_format.settings
        logger.debug(
            "Configuring %s: %d baud %s", self.device, baudrate, frame_format
        )

        if self.is_open:
            try:
                self._port.baudrate = baudrate
                self._port.parity = _PARITY[settings.parity]
                self._port.stopbits = _STOPBITS[settings.stopbits]
                self._port.bytesize = settings.bytesize
            except (serial.SerialException, ValueError) as e:
                raise TransportError(
                    f"cannot reconfigure {self.device}: {e}", stage=Stage.CONFIGURE
                ) from e
            return

        try:
            self._port = serial.Serial(
                port=self.device,
                baudrate=baudrate,
                bytesize=settings.bytesize,
                parity=_PARITY[settings.parity],
                stopbits=_STOPBITS[settings.stopbits],
                timeout=self.timeout,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
        except serial.SerialException as e:
            self._port = None
            error_msg = str(e)

            if "Permission denied" in error_msg:
                message = (
                    f"permission denied accessing {self.device}. "
                    "You may need to add your user to the 'dialout' group"
                )
            elif "No such file" in error_msg or "not found" in error_msg.lower():
                message = (
                    f"serial port not found: {self.device}. "
                    "Use 'updilink ports' to list available ports."
                )
            elif "busy" in error_msg.lower() or "in use" in error_msg.lower():
                message = (
                    f"serial port {self.device} is busy. "
                    "Close any other programs using the port."
                )
            else:
                message = f"cannot open {self.device}: {e}"
            raise TransportError(message, stage=Stage.CONFIGURE) from e

    def send(self, data: bytes) -> int:
        port = self._require_open(Stage.SEND)
        try:
            written = port.write(data)
            port.flush()
        except serial.SerialException as e:
            raise TransportError(f"write failed: {e}", stage=Stage.SEND) from e
        return written if written is not None else len(data)

    def receive(self, count: int) -> bytes:
        port = self._require_open(Stage.RECEIVE)
        try:
            return bytes(port.read(count))
        except serial.SerialException as e:
            raise TransportError(f"read failed: {e}", stage=Stage.RECEIVE) from e

    def drain(self) -> None:
        port = self._require_open(Stage.CONFIGURE)
        try:
            port.reset_input_buffer()
        except serial.SerialException as e:
            raise TransportError(f"drain failed: {e}", stage=Stage.CONFIGURE) from e

    def close(self) -> None:
        port, self._port = self._port, None
        if port is None:
            return

        try:
            if port.is_open:
                port.reset_input_buffer()
                port.reset_output_buffer()
                port.close()
                logger.debug("Serial port closed")
        except Exception as e:
            logger.warning("Error closing serial port: %s", e)

    def _require_open(self, stage: Stage) -> serial.Serial:
        if not self.is_open:
            raise TransportError(f"{self.device} is not open", stage=stage)
        return self._port
