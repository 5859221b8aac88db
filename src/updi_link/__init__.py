"""
updi-link - UPDI Link Layer for AVR Microcontrollers
====================================================

This package drives the UPDI (Unified Program and Debug Interface) of
tinyAVR, megaAVR 0-series and AVR Dx/Ex microcontrollers through a
plain USB-serial adapter ("SerialUPDI"). It turns logical operations
into framed UPDI instructions and checks the target's echoes and
acknowledgements.

Main Components
---------------
- **comms**: The link layer
    Physical framing, double-break resync, session init, Control/Status
    access, direct and pointer load/store, bulk RSD writes, KEY and SIB

- **config**: Connection settings (port, baud rate, address width)

- **testkit**: Simulated UPDI target and pytest fixtures

- **cli**: Diagnostic command-line tool (updilink)

Quick Start
-----------
    >>> from updi_link import LinkConfig, open_link
    >>> link = open_link(LinkConfig(port="/dev/ttyUSB0"))
    >>> link.init()
    >>> link.read_sib()[:7]
    b'tinyAVR'
    >>> link.close()

Flash page writers, fuse handling and device tables are left to
higher-level programming tools built on top of UpdiDatalink.

Version History
---------------
1.0.0 - Initial release
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from updi_link.errors import (
    UpdiError,
    Stage,
    TransportError,
    NoResponseError,
    ProtocolError,
    AckError,
    InvalidArgumentError,
    InvalidKeyLengthError,
    LinkInitError,
)
from updi_link.comms import (
    AddressMode,
    CSRegister,
    KeySize,
    FrameFormat,
    Transport,
    SerialTransport,
    UpdiPhysical,
    UpdiDatalink,
    LinkState,
    SessionState,
)
from updi_link.config import LinkConfig, open_link

__all__ = [
    "__version__",
    # Errors
    "UpdiError",
    "Stage",
    "TransportError",
    "NoResponseError",
    "ProtocolError",
    "AckError",
    "InvalidArgumentError",
    "InvalidKeyLengthError",
    "LinkInitError",
    # Link
    "AddressMode",
    "CSRegister",
    "KeySize",
    "FrameFormat",
    "Transport",
    "SerialTransport",
    "UpdiPhysical",
    "UpdiDatalink",
    "LinkState",
    "SessionState",
    # Configuration
    "LinkConfig",
    "open_link",
]
