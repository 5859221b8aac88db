"""
UPDI Link Configuration
=======================

Connection settings for a UPDI link. Configuration can come from:
- Default values (defined here)
- Environment variables
- Command-line options (applied by the CLI on top of the above)

Environment variables (all optional):
    UPDI_PORT: Serial device (e.g. /dev/ttyUSB0, COM3)
    UPDI_BAUD: Operating baud rate
    UPDI_ADDRESS_MODE: 16 or 24
    UPDI_TIMEOUT: Per-read timeout in seconds
    UPDI_BLOCKSIZE: Maximum bytes per transmission for bulk RSD writes
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from updi_link.comms.constants import UPDI_DEFAULT_BAUD, AddressMode
from updi_link.comms.link import UpdiDatalink
from updi_link.comms.physical import TraceCallback
from updi_link.comms.serial import DEFAULT_TIMEOUT, SerialTransport
from updi_link.errors import InvalidArgumentError

logger = logging.getLogger(__name__)


@dataclass
class LinkConfig:
    """
    Settings for opening a UPDI link.

    Attributes:
        port: Serial device path (None: auto-detect)
        baudrate: Operating baud rate (default: 115200)
        address_mode: Address width for direct and pointer frames
        timeout: Per-read timeout in seconds (default: 0.1)
        blocksize: RSD chunk size in bytes (None: one transmission)
    """

    port: Optional[str] = None
    baudrate: int = UPDI_DEFAULT_BAUD
    address_mode: AddressMode = AddressMode.ADDR_16
    timeout: float = DEFAULT_TIMEOUT
    blocksize: Optional[int] = None

    @classmethod
    def from_env(cls) -> "LinkConfig":
        """
        Create LinkConfig from environment variables.

        Invalid values are logged and ignored.
        """
        config = cls()

        if port := os.environ.get("UPDI_PORT"):
            config.port = port

        if baud := os.environ.get("UPDI_BAUD"):
            try:
                config.baudrate = int(baud)
            except ValueError:
                logger.warning("Ignoring invalid UPDI_BAUD: %r", baud)

        if mode := os.environ.get("UPDI_ADDRESS_MODE"):
            try:
                config.address_mode = AddressMode.from_bits(int(mode))
            except ValueError:
                logger.warning("Ignoring invalid UPDI_ADDRESS_MODE: %r", mode)

        if timeout := os.environ.get("UPDI_TIMEOUT"):
            try:
                config.timeout = float(timeout)
            except ValueError:
                logger.warning("Ignoring invalid UPDI_TIMEOUT: %r", timeout)

        if blocksize := os.environ.get("UPDI_BLOCKSIZE"):
            try:
                config.blocksize = int(blocksize)
            except ValueError:
                logger.warning("Ignoring invalid UPDI_BLOCKSIZE: %r", blocksize)

        return config

    def validate(self) -> None:
        """
        Check the settings are usable.

        Raises:
            InvalidArgumentError: On a non-positive baud rate or timeout,
                or a block size below 1.
        """
        if self.baudrate <= 0:
            raise InvalidArgumentError(f"invalid baud rate: {self.baudrate}")
        if self.timeout <= 0:
            raise InvalidArgumentError(f"invalid timeout: {self.timeout}")
        if self.blocksize is not None and self.blocksize < 1:
            raise InvalidArgumentError(f"invalid block size: {self.blocksize}")


def open_link(config: LinkConfig, trace: Optional[TraceCallback] = None) -> UpdiDatalink:
    """
    Build a serial UPDI link from a configuration and open it.

    The datalink is opened (double break sent) but not initialised;
    call init() on the result.

    Raises:
        InvalidArgumentError: If the configuration is invalid or has no port.
        TransportError: If the port cannot be opened.
    """
    config.validate()
    if not config.port:
        raise InvalidArgumentError("no serial port configured")

    transport = SerialTransport(config.port, timeout=config.timeout)
    link = UpdiDatalink(
        transport,
        address_mode=config.address_mode,
        baudrate=config.baudrate,
        trace=trace,
        blocksize=config.blocksize,
    )
    try:
        link.open()
    except Exception:
        link.close()
        raise
    return link
