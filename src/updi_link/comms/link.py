"""
UPDI Datalink Implementation
============================

This module implements the UPDI datalink layer on top of the physical
framer. It handles:

- Session initialisation and datalink verification
- Control/Status register access (LDCS/STCS)
- Direct memory access (LDS/STS), 16- or 24-bit addressing
- Pointer access with post-increment (LD/ST *ptr++)
- Bulk word stores using the REPEAT counter with response
  signatures disabled (RSD)
- KEY and SIB instructions

Frame Structure
---------------
Every instruction is a short frame starting with the SYNC character:

    ┌──────┬────────┬─────────────────┬───────────────┐
    │ SYNC │ Opcode │ Address (LE)    │ Data          │
    │  55  │   XX   │ 0, 2 or 3 bytes │ 0..n bytes    │
    └──────┴────────┴─────────────────┴───────────────┘

Stores answer with ACK (0x40) once the address phase completes and again
after the data phase. Loads answer with raw data. Control/Status stores
are not acknowledged.

Session Handshake
-----------------
1. Physical open in 8E2, followed by one unconditional double break
2. STCS CTRLB: disable collision detection
3. STCS CTRLA: enable inter-byte delay
4. LDCS STATUSA must be non-zero
5. If not: one more double break, repeat 2-4, otherwise give up

Byte Order
----------
Addresses and stored words go out little-endian. ld16() assembles the
two returned bytes big-endian (first byte received is the high byte).
Both are kept as found on real targets; do not "fix" one to match the
other.

References
----------
- ATtiny417/817 datasheet, UPDI chapter
- pymcuprog (https://github.com/microchip-pic-avr-tools/pymcuprog)
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Final, Optional

from updi_link.comms.constants import (
    UPDI_CTRLA_IBDLY_BIT,
    UPDI_CTRLA_RSD_DISABLE,
    UPDI_CTRLA_RSD_ENABLE,
    UPDI_CTRLB_CCDETDIS_BIT,
    UPDI_DATA_8,
    UPDI_DATA_16,
    UPDI_DEFAULT_BAUD,
    UPDI_KEY,
    UPDI_KEY_KEY,
    UPDI_LD,
    UPDI_LDCS,
    UPDI_LDS,
    UPDI_MAX_REPEAT_SIZE,
    UPDI_PHY_ACK,
    UPDI_PHY_SYNC,
    UPDI_PTR_ADDRESS,
    UPDI_PTR_INC,
    UPDI_REPEAT,
    UPDI_REPEAT_BYTE,
    UPDI_SIB_LENGTH,
    UPDI_ST,
    UPDI_STCS,
    UPDI_STS,
    AddressMode,
    CSRegister,
    KeySize,
)
from updi_link.comms.physical import LinkState, TraceCallback, UpdiPhysical
from updi_link.errors import (
    AckError,
    InvalidArgumentError,
    InvalidKeyLengthError,
    LinkInitError,
    ProtocolError,
    Stage,
    UpdiError,
)

if TYPE_CHECKING:
    from updi_link.comms.transport import Transport

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

# LDCS answers with exactly one byte
LDCS_RESPONSE_BYTES: Final[int] = 1

# Bytes in the RSD preamble: STCS CTRLA + REPEAT + ST ptr++ (3 + 3 + 2)
RSD_HEADER_SIZE: Final[int] = 8

# Bytes in the RSD epilogue: STCS CTRLA restoring response signatures
RSD_TRAILER_SIZE: Final[int] = 3

# Length of STCS CTRLA + REPEAT sent ahead of small RSD chunks
RSD_FIRST_PACKAGE_SIZE: Final[int] = 6

# Below this chunk size the STCS/REPEAT pair is sent on its own first
RSD_MIN_BLOCKSIZE: Final[int] = 10


class SessionState(Enum):
    """Progress of datalink initialisation."""

    UNSYNCHRONIZED = "unsynchronized"
    SESSION_PARAMETERS_SET = "session parameters set"
    VERIFIED = "verified"


# =============================================================================
# Datalink
# =============================================================================

class UpdiDatalink:
    """
    UPDI datalink: the link handle consumers program a target through.

    The address mode is fixed for the lifetime of the handle; a target
    with a different address width needs a new UpdiDatalink.

    Not thread-safe. Use one instance per physical channel and issue one
    operation at a time.

    Usage:
        link = UpdiDatalink(SerialTransport('/dev/ttyUSB0'))
        link.open()
        link.init()

        sib = link.read_sib()
        link.st_ptr(0x8000)
        data = link.ld_ptr_inc(64)

        link.close()
    """

    def __init__(
        self,
        transport: "Transport",
        address_mode: AddressMode = AddressMode.ADDR_16,
        baudrate: int = UPDI_DEFAULT_BAUD,
        trace: Optional[TraceCallback] = None,
        blocksize: Optional[int] = None,
    ):
        """
        Args:
            transport: Channel to the target.
            address_mode: 16- or 24-bit addressing for LDS/STS/pointer frames.
            baudrate: Operating baud rate.
            trace: Optional observer called with every frame sent/received.
            blocksize: Default chunk size for st_ptr_inc16_rsd (None: one
                transmission).

        Raises:
            InvalidArgumentError: On an unknown address mode or a
                non-positive blocksize.
        """
        try:
            self._address_mode = AddressMode(address_mode)
        except ValueError as e:
            raise InvalidArgumentError(f"unsupported address mode: {address_mode!r}") from e
        if blocksize is not None and blocksize < 1:
            raise InvalidArgumentError(f"invalid block size: {blocksize}")
        self._blocksize = blocksize
        self.phy = UpdiPhysical(transport, baudrate=baudrate, trace=trace)
        self._session_state = SessionState.UNSYNCHRONIZED

    @property
    def address_mode(self) -> AddressMode:
        """Address width used by this link."""
        return self._address_mode

    @property
    def session_state(self) -> SessionState:
        """Current datalink session state."""
        return self._session_state

    @property
    def state(self) -> LinkState:
        """Current physical channel state."""
        return self.phy.state

    @property
    def baudrate(self) -> int:
        """Operating baud rate."""
        return self.phy.baudrate

    @property
    def blocksize(self) -> Optional[int]:
        """Default chunk size for RSD block stores."""
        return self._blocksize

    def __enter__(self) -> "UpdiDatalink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Session Management
    # -------------------------------------------------------------------------

    def open(self) -> None:
        """
        Open the channel and resynchronise the target.

        The target may be in any state after power-up or an aborted
        session, so one double break is always sent.

        Raises:
            TransportError: If the channel cannot be opened.
        """
        logger.info("Opening UPDI link at %d baud", self.phy.baudrate)
        self._session_state = SessionState.UNSYNCHRONIZED
        self.phy.open()
        self.phy.send_double_break()

    def close(self) -> None:
        """Close the channel. Safe to call in any state."""
        self.phy.close()
        self._session_state = SessionState.UNSYNCHRONIZED
        logger.info("UPDI link closed")

    def init_session_parameters(self) -> None:
        """
        Disable collision detection and enable the inter-byte delay.

        Raises:
            TransportError: If either store cannot be sent.
        """
        self._session_state = SessionState.UNSYNCHRONIZED
        self.stcs(CSRegister.CTRLB, 1 << UPDI_CTRLB_CCDETDIS_BIT)
        self.stcs(CSRegister.CTRLA, 1 << UPDI_CTRLA_IBDLY_BIT)
        self._session_state = SessionState.SESSION_PARAMETERS_SET

    def check_datalink(self) -> bool:
        """
        Check the datalink by loading STATUSA.

        A zero value and a failed load both mean "not verified";
        callers are not told which. A verified session drops back to
        SESSION_PARAMETERS_SET when a later check fails.

        Returns:
            True if the datalink is up.
        """
        try:
            if self.ldcs(CSRegister.STATUSA) != 0:
                logger.info("UPDI init OK")
                self._session_state = SessionState.VERIFIED
                return True
        except UpdiError as e:
            logger.warning("Check failed: %s", e)
            self._drop_verified()
            return False
        logger.info("UPDI not OK - reinitialisation required")
        self._drop_verified()
        return False

    def _drop_verified(self) -> None:
        if self._session_state is SessionState.VERIFIED:
            self._session_state = SessionState.SESSION_PARAMETERS_SET

    def init(self) -> None:
        """
        Initialise the datalink, with one double-break recovery attempt.

        Raises:
            LinkInitError: If the datalink is still down after the retry.
            TransportError: If a session parameter store cannot be sent.
        """
        self.init_session_parameters()
        if self.check_datalink():
            return

        logger.info("Datalink not active, resetting")
        self.phy.send_double_break()
        self.init_session_parameters()
        if not self.check_datalink():
            raise LinkInitError("UPDI initialisation failed after double break")

    # -------------------------------------------------------------------------
    # Control/Status Space
    # -------------------------------------------------------------------------

    def ldcs(self, address: int) -> int:
        """
        Load a value from Control/Status space.

        Args:
            address: Register index; only the low 4 bits are used.

        Returns:
            Register value.

        Raises:
            NoResponseError: If the target does not answer.
            ProtocolError: If the answer has the wrong size.
        """
        logger.debug("LDCS from 0x%02X", address)
        self.phy.send(bytes([UPDI_PHY_SYNC, UPDI_LDCS | (address & 0x0F)]))
        response = self.phy.receive(LDCS_RESPONSE_BYTES)
        if len(response) != LDCS_RESPONSE_BYTES:
            raise ProtocolError(
                f"unexpected response size: {len(response)} byte(s), "
                f"expected {LDCS_RESPONSE_BYTES}",
                stage=Stage.RECEIVE,
            )
        return response[0]

    def stcs(self, address: int, value: int) -> None:
        """
        Store a value to Control/Status space.

        Not acknowledged by the target.

        Args:
            address: Register index; only the low 4 bits are used.
            value: Byte to write.
        """
        logger.debug("STCS 0x%02X to 0x%02X", value, address)
        self.phy.send(bytes([UPDI_PHY_SYNC, UPDI_STCS | (address & 0x0F), value & 0xFF]))

    # -------------------------------------------------------------------------
    # Direct Memory Access
    # -------------------------------------------------------------------------

    def ld(self, address: int) -> int:
        """
        Load a single byte directly from an address.

        Args:
            address: Target address.

        Returns:
            Byte read.
        """
        logger.debug("LD from 0x%06X", address)
        self.phy.send(self._direct_frame(UPDI_LDS | UPDI_DATA_8, address))
        return self._receive_exact(1)[0]

    def ld16(self, address: int) -> int:
        """
        Load a 16-bit word directly from an address.

        The first byte received is the high byte.

        Args:
            address: Target address.

        Returns:
            Word read.
        """
        logger.debug("LD16 from 0x%06X", address)
        self.phy.send(self._direct_frame(UPDI_LDS | UPDI_DATA_16, address))
        response = self._receive_exact(2)
        return (response[0] << 8) | response[1]

    def st(self, address: int, value: int) -> None:
        """
        Store a single byte directly to an address.

        Args:
            address: Target address.
            value: Byte to write.
        """
        logger.debug("ST to 0x%06X", address)
        self.phy.send(self._direct_frame(UPDI_STS | UPDI_DATA_8, address))
        self._st_data_phase(bytes([value & 0xFF]))

    def st16(self, address: int, value: int) -> None:
        """
        Store a 16-bit word directly to an address, low byte first.

        Args:
            address: Target address.
            value: Word to write.
        """
        logger.debug("ST16 to 0x%06X", address)
        self.phy.send(self._direct_frame(UPDI_STS | UPDI_DATA_16, address))
        self._st_data_phase(bytes([value & 0xFF, (value >> 8) & 0xFF]))

    def load(self, address: int, width: int = 8) -> int:
        """Direct load of an 8- or 16-bit value."""
        if width == 8:
            return self.ld(address)
        if width == 16:
            return self.ld16(address)
        raise InvalidArgumentError(f"unsupported data width: {width} (expected 8 or 16)")

    def store(self, address: int, value: int, width: int = 8) -> None:
        """Direct store of an 8- or 16-bit value."""
        if width == 8:
            self.st(address, value)
        elif width == 16:
            self.st16(address, value)
        else:
            raise InvalidArgumentError(f"unsupported data width: {width} (expected 8 or 16)")

    # -------------------------------------------------------------------------
    # Pointer Access
    # -------------------------------------------------------------------------

    def st_ptr(self, address: int) -> None:
        """
        Set the target's pointer register.

        Args:
            address: Address to load into the pointer.

        Raises:
            AckError: If the target does not acknowledge.
        """
        logger.debug("ST to ptr 0x%06X", address)
        self._check_address(address)
        frame = bytearray([
            UPDI_PHY_SYNC,
            UPDI_ST | UPDI_PTR_ADDRESS | self._address_mode.pointer_flag,
        ])
        frame.extend(address.to_bytes(self._address_mode.value, "little"))
        self.phy.send(bytes(frame))
        self._expect_ack("ack expected after pointer store")

    def ld_ptr_inc(self, size: int) -> bytes:
        """
        Load bytes from the pointer location with post-increment.

        The target streams the whole run without acknowledgements.

        Args:
            size: Number of bytes to load.

        Returns:
            Bytes read.
        """
        logger.debug("LD8 from ptr++")
        self.phy.send(bytes([UPDI_PHY_SYNC, UPDI_LD | UPDI_PTR_INC | UPDI_DATA_8]))
        return self.phy.receive(size)

    def ld_ptr_inc16(self, words: int) -> bytes:
        """
        Load 16-bit words from the pointer location with post-increment.

        Requests ``words << 2`` bytes from the transport although the
        target only sends ``words * 2``; the surplus comes back as a
        short read once the read timeout expires. Kept as found on
        hardware-tested programmers until verified otherwise.

        Args:
            words: Number of words to load.

        Returns:
            Bytes read, low byte of each word first.
        """
        logger.debug("LD16 from ptr++")
        self.phy.send(bytes([UPDI_PHY_SYNC, UPDI_LD | UPDI_PTR_INC | UPDI_DATA_16]))
        return self.phy.receive(words << 2)

    def st_ptr_inc(self, data: bytes) -> None:
        """
        Store bytes to the pointer location with post-increment.

        Each byte is acknowledged. The first missing ACK aborts the
        call; bytes already stored stay stored.

        Args:
            data: Bytes to store.

        Raises:
            AckError: If any byte is not acknowledged.
        """
        logger.debug("ST8 to *ptr++")
        data = bytes(data)
        if not data:
            raise InvalidArgumentError("no data to store")

        self.phy.send(bytes([UPDI_PHY_SYNC, UPDI_ST | UPDI_PTR_INC | UPDI_DATA_8, data[0]]))
        self._expect_ack("ack expected after first byte")

        for num in range(1, len(data)):
            self.phy.send(data[num:num + 1])
            self._expect_ack(f"ack expected after byte {num}")

    def st_ptr_inc16(self, data: bytes) -> None:
        """
        Store 16-bit words to the pointer location with post-increment.

        Each word is acknowledged. The first missing ACK aborts the
        call; words already stored stay stored.

        Args:
            data: Bytes to store, low byte of each word first.

        Raises:
            AckError: If any word is not acknowledged.
        """
        logger.debug("ST16 to *ptr++")
        data = self._check_words(data)

        self.phy.send(bytes([
            UPDI_PHY_SYNC, UPDI_ST | UPDI_PTR_INC | UPDI_DATA_16, data[0], data[1]
        ]))
        self._expect_ack("ack expected after first word")

        for num in range(2, len(data), 2):
            self.phy.send(data[num:num + 2])
            self._expect_ack(f"ack expected after word {num >> 1}")

    def st_ptr_inc16_rsd(self, data: bytes, blocksize: Optional[int] = None) -> None:
        """
        Store 16-bit words with post-increment, without per-word ACKs.

        Builds one buffer:

            STCS CTRLA 0x0E | REPEAT n-1 | ST ptr++ 16 | data | STCS CTRLA 0x06

        and sends it in chunks of at most blocksize bytes. The first
        STCS enables RSD so the target stops answering, the REPEAT
        counter applies the store to every word, and the last STCS
        restores response signatures.

        When blocksize is below 10 the STCS/REPEAT pair (6 bytes) is sent
        as its own first chunk regardless, since the target needs those
        two instructions back to back.

        Nothing is acknowledged; a transport failure mid-stream leaves
        the target memory in an unknown state.

        Args:
            data: Bytes to store, low byte of each word first.
            blocksize: Maximum bytes per transmission (None: the link's
                default blocksize, or all at once if that is unset too).

        Raises:
            InvalidArgumentError: On odd-length data, too many words for
                the REPEAT counter, or a non-positive blocksize.
            TransportError: If a chunk cannot be sent.
        """
        data = self._check_words(data)
        words = len(data) >> 1
        self._check_repeat(words)
        if blocksize is None:
            blocksize = self._blocksize
        if blocksize is not None and blocksize < 1:
            raise InvalidArgumentError(f"invalid block size: {blocksize}")

        logger.debug(
            "ST16 to *ptr++ with RSD, data length: 0x%03X in blocks of: %s",
            len(data), blocksize if blocksize is not None else "all"
        )

        buffer = bytearray()
        buffer.extend([UPDI_PHY_SYNC, UPDI_STCS | CSRegister.CTRLA, UPDI_CTRLA_RSD_ENABLE])
        buffer.extend([UPDI_PHY_SYNC, UPDI_REPEAT | UPDI_REPEAT_BYTE, (words - 1) & 0xFF])
        buffer.extend([UPDI_PHY_SYNC, UPDI_ST | UPDI_PTR_INC | UPDI_DATA_16])
        buffer.extend(data)
        buffer.extend([UPDI_PHY_SYNC, UPDI_STCS | CSRegister.CTRLA, UPDI_CTRLA_RSD_DISABLE])

        if blocksize is None:
            blocksize = len(buffer)

        num = 0
        if blocksize < RSD_MIN_BLOCKSIZE:
            self.phy.send(bytes(buffer[:RSD_FIRST_PACKAGE_SIZE]))
            num = RSD_FIRST_PACKAGE_SIZE

        while num < len(buffer):
            package = bytes(buffer[num:num + blocksize])
            self.phy.send(package)
            num += len(package)

    def repeat(self, repeats: int) -> None:
        """
        Load the REPEAT counter.

        Args:
            repeats: Number of times the next instruction executes
                (1 to 256).

        Raises:
            InvalidArgumentError: If repeats is out of range. Nothing is sent.
        """
        logger.debug("Repeat %d", repeats)
        self._check_repeat(repeats)
        self.phy.send(bytes([
            UPDI_PHY_SYNC, UPDI_REPEAT | UPDI_REPEAT_BYTE, (repeats - 1) & 0xFF
        ]))

    # -------------------------------------------------------------------------
    # KEY and SIB
    # -------------------------------------------------------------------------

    def key(self, size: KeySize, key: bytes) -> None:
        """
        Write a key.

        The target expects the key last byte first, so the bytes are
        sent reversed.

        Args:
            size: Key size class (64, 128 or 256 bits).
            key: Key value, exactly 8 << size bytes.

        Raises:
            InvalidArgumentError: If size is not a key size class.
                Nothing is sent.
            InvalidKeyLengthError: If the key has the wrong length.
                Nothing is sent.
        """
        logger.debug("Writing key")
        try:
            size = KeySize(size)
        except ValueError as e:
            raise InvalidArgumentError(f"unsupported key size: {size!r}") from e
        key = bytes(key)
        if len(key) != size.length:
            raise InvalidKeyLengthError(expected=size.length, actual=len(key))

        self.phy.send(bytes([UPDI_PHY_SYNC, UPDI_KEY | UPDI_KEY_KEY | size]))
        self.phy.send(key[::-1])

    def read_sib(self, size: int = UPDI_SIB_LENGTH) -> bytes:
        """
        Read the System Information Block.

        Args:
            size: 8, 16 or 32 bytes; the request asks for exactly that many.

        Returns:
            size raw bytes; not parsed here.

        Raises:
            InvalidArgumentError: If size is not 8, 16 or 32. Nothing is sent.
        """
        logger.debug("Reading SIB")
        return self.phy.sib(size)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _direct_frame(self, opcode: int, address: int) -> bytes:
        """Build SYNC + LDS/STS opcode + little-endian address."""
        self._check_address(address)
        frame = bytearray([UPDI_PHY_SYNC, opcode | self._address_mode.address_flag])
        frame.extend(address.to_bytes(self._address_mode.value, "little"))
        return bytes(frame)

    def _check_address(self, address: int) -> None:
        if not 0 <= address <= self._address_mode.max_address:
            raise InvalidArgumentError(
                f"address 0x{address:X} out of range for "
                f"{self._address_mode.value * 8}-bit addressing"
            )

    @staticmethod
    def _check_words(data: bytes) -> bytes:
        data = bytes(data)
        if not data:
            raise InvalidArgumentError("no data to store")
        if len(data) % 2:
            raise InvalidArgumentError(
                f"word store needs an even number of bytes, got {len(data)}"
            )
        return data

    @staticmethod
    def _check_repeat(repeats: int) -> None:
        if repeats < 1 or (repeats - 1) > UPDI_MAX_REPEAT_SIZE:
            logger.error("Invalid repeat count of %d", repeats)
            raise InvalidArgumentError(
                f"invalid repeat count: {repeats} "
                f"(allowed 1 to {UPDI_MAX_REPEAT_SIZE + 1})"
            )

    def _receive_exact(self, count: int) -> bytes:
        response = self.phy.receive(count)
        if len(response) != count:
            raise ProtocolError(
                f"unexpected response size: {len(response)} byte(s), expected {count}",
                stage=Stage.RECEIVE,
            )
        return response

    def _expect_ack(self, message: str) -> None:
        response = self.phy.receive(1)
        if len(response) != 1 or response[0] != UPDI_PHY_ACK:
            raise AckError(message, received=response[0] if response else None)

    def _st_data_phase(self, values: bytes) -> None:
        """
        Data phase of a direct store.

        ACK, then the data, then a second ACK. Both checks are required
        and the data must not be sent before the first ACK.
        """
        self._expect_ack("ack expected before data phase")
        self.phy.send(values)
        self._expect_ack("ack expected after data phase")
