"""
UPDI Communication Module
=========================

This module implements the host side of UPDI (Unified Program and Debug
Interface), the single-wire half-duplex programming interface of tinyAVR,
megaAVR 0-series and AVR Dx/Ex parts, as seen through a SerialUPDI
adapter.

Module Structure
----------------
- **constants**: Wire constants (SYNC, ACK, opcodes, CS registers, keys)
- **transport**: Transport contract and serial frame formats
- **serial**: pyserial-backed transport and port detection
- **physical**: Echo handling, double break, SIB
- **link**: Session management and all load/store/key primitives

Quick Start
-----------
    from updi_link.comms import SerialTransport, UpdiDatalink

    link = UpdiDatalink(SerialTransport('/dev/ttyUSB0'))
    link.open()
    link.init()

    print(link.read_sib())

    link.st_ptr(0x8000)
    link.repeat(64)
    data = link.ld_ptr_inc(64)

    link.close()

Error Handling
--------------
All link errors inherit from `UpdiError`:

- `TransportError`: Channel failure (`NoResponseError` on read timeout)
- `ProtocolError`: Unexpected response (`AckError` on a missing ACK)
- `InvalidArgumentError`: Caller misuse, nothing was sent
- `LinkInitError`: Datalink still down after one double break

These exceptions are defined in `updi_link.errors`.

Thread Safety
-------------
The communication classes are NOT thread-safe. Use one UpdiDatalink per
serial port and issue one operation at a time.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Wire constants
from updi_link.comms.constants import (
    UPDI_BREAK,
    UPDI_DEFAULT_BAUD,
    UPDI_KEY_CHIPERASE,
    UPDI_KEY_NVM,
    UPDI_KEY_UROW,
    UPDI_MAX_REPEAT_SIZE,
    UPDI_PHY_ACK,
    UPDI_PHY_SYNC,
    UPDI_SIB_LENGTH,
    AddressMode,
    CSRegister,
    KeySize,
    SibSize,
)

# Transport contract
from updi_link.comms.transport import (
    FrameFormat,
    FrameSettings,
    Transport,
)

# Serial transport
from updi_link.comms.serial import (
    DEFAULT_TIMEOUT,
    PortInfo,
    SerialTransport,
    find_updi_port,
    format_port_list,
    list_serial_ports,
)

# Physical layer
from updi_link.comms.physical import (
    LinkState,
    TraceCallback,
    UpdiPhysical,
)

# Datalink
from updi_link.comms.link import (
    SessionState,
    UpdiDatalink,
)

__all__ = [
    # Constants
    "UPDI_PHY_SYNC",
    "UPDI_PHY_ACK",
    "UPDI_BREAK",
    "UPDI_DEFAULT_BAUD",
    "UPDI_MAX_REPEAT_SIZE",
    "UPDI_SIB_LENGTH",
    "UPDI_KEY_NVM",
    "UPDI_KEY_CHIPERASE",
    "UPDI_KEY_UROW",
    "AddressMode",
    "CSRegister",
    "KeySize",
    "SibSize",
    # Transport
    "FrameFormat",
    "FrameSettings",
    "Transport",
    # Serial
    "DEFAULT_TIMEOUT",
    "PortInfo",
    "SerialTransport",
    "list_serial_ports",
    "find_updi_port",
    "format_port_list",
    # Physical
    "LinkState",
    "TraceCallback",
    "UpdiPhysical",
    # Datalink
    "SessionState",
    "UpdiDatalink",
]
