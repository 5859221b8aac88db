"""
UPDI Link Error Hierarchy
=========================

This module defines the exception hierarchy for the UPDI link layer.
All exceptions inherit from UpdiError, allowing callers to catch all
link-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
UpdiError (base)
├── TransportError - channel open/configure/send failure
│   └── NoResponseError - device did not answer a read
├── ProtocolError - unexpected response size or value
│   └── AckError - missing or incorrect ACK sentinel
├── InvalidArgumentError - caller-side misuse, nothing was sent
│   └── InvalidKeyLengthError - key length does not match its size class
└── LinkInitError - datalink could not be verified after one resync

Design Philosophy
-----------------
Byte-level protocol errors are otherwise indistinguishable from transport
hiccups, so each exception records the stage of the exchange that failed
(argument check, configure, send, receive, ACK check, init). Messages
follow this format:

    <stage> failed: description

Recovery Policy
---------------
Nothing below the session manager retries. A TransportError or
ProtocolError leaves the link desynchronised; the caller should reopen
and reinitialise it. Partially applied stores are never rolled back.
"""

from enum import Enum
from typing import Optional


# =============================================================================
# Failure Stages
# =============================================================================

class Stage(Enum):
    """Step of a UPDI exchange at which an error was detected."""

    ARGUMENT = "argument validation"
    CONFIGURE = "configure"
    SEND = "send"
    RECEIVE = "receive"
    ACK = "ACK check"
    INIT = "datalink init"


# =============================================================================
# Base Exception Class
# =============================================================================

class UpdiError(Exception):
    """
    Base exception for all UPDI link errors.

    Attributes:
        message: The error description
        stage: Which step of the exchange failed (optional)
    """

    def __init__(self, message: str, stage: Optional[Stage] = None):
        self.message = message
        self.stage = stage
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.stage is None:
            return self.message
        return f"{self.stage.value} failed: {self.message}"


# =============================================================================
# Transport Exceptions
# =============================================================================

class TransportError(UpdiError):
    """
    The underlying channel failed.

    Raised when:
    - Serial port cannot be opened or reconfigured
    - A write to the port fails
    - An operation is attempted on a closed link
    """
    pass


class NoResponseError(TransportError):
    """
    The device did not answer a read.

    A read timeout is taken to mean the target is unresponsive, not
    merely slow. Typical causes:
    - Target not powered or UPDI pin not connected
    - Wrong baud rate after a double break
    - Link desynchronised by an earlier failure
    """

    def __init__(self, message: str, expected: int = 0, stage: Optional[Stage] = Stage.RECEIVE):
        self.expected = expected
        super().__init__(message, stage=stage)


# =============================================================================
# Protocol Exceptions
# =============================================================================

class ProtocolError(UpdiError):
    """
    The device sent something the protocol does not allow here.

    This normally indicates the host and target have lost byte
    synchronisation.
    """
    pass


class AckError(ProtocolError):
    """
    An ACK sentinel was expected but not received.

    Attributes:
        received: The byte received instead (None if nothing arrived)
    """

    def __init__(self, message: str = "ack expected", received: Optional[int] = None):
        self.received = received
        if received is not None:
            message = f"{message} (got 0x{received:02X})"
        super().__init__(message, stage=Stage.ACK)


# =============================================================================
# Argument Exceptions
# =============================================================================

class InvalidArgumentError(UpdiError, ValueError):
    """
    Caller-side misuse detected before anything was sent.

    Also a ValueError, so generic argument handling keeps working.
    """

    def __init__(self, message: str):
        super().__init__(message, stage=Stage.ARGUMENT)


class InvalidKeyLengthError(InvalidArgumentError):
    """
    Key length does not match the requested key size class.

    Attributes:
        expected: Required key length in bytes
        actual: Length of the key supplied
    """

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"invalid key length: expected {expected} bytes, got {actual}"
        )


# =============================================================================
# Session Exceptions
# =============================================================================

class LinkInitError(UpdiError):
    """
    The datalink could not be verified, even after one double break.

    This is fatal at the link layer. The caller may close the link and
    start again from open(), but init() itself will not retry further.
    """

    def __init__(self, message: str = "UPDI initialisation failed"):
        super().__init__(message, stage=Stage.INIT)
