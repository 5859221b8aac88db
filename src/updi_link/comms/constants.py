"""
UPDI Wire Constants
===================

Every byte value the link layer puts on, or expects from, the UPDI pin.
These must match the target silicon exactly.

Instruction Byte Layout
-----------------------
Each instruction is preceded by the SYNC character (0x55). The opcode
byte carries the instruction family in its upper three bits and the
operand modifiers in the lower bits:

    ┌─────────┬──────────────┬──────────────┐
    │ 7  6  5 │    4  3  2   │     1  0     │
    │ family  │ addr / ptr   │  data width  │
    └─────────┴──────────────┴──────────────┘

- LDCS/STCS use the low nibble as a 4-bit register index instead.
- KEY uses bit 2 to select SIB read and bits 1..0 for the size class.

References
----------
- ATtiny417/817 datasheet, chapter "UPDI - Unified Program and Debug Interface"
- pymcuprog (https://github.com/microchip-pic-avr-tools/pymcuprog)
"""

from enum import IntEnum
from typing import Final

from updi_link.errors import InvalidArgumentError


# =============================================================================
# Physical Layer
# =============================================================================

# Synchronisation character preceding every instruction
UPDI_PHY_SYNC: Final[int] = 0x55

# Acknowledge sentinel sent by the target after a data phase
UPDI_PHY_ACK: Final[int] = 0x40

# Break character, sent at 300 baud so the target sees a long low period
UPDI_BREAK: Final[int] = 0x00

# Baud rate used while transmitting the double break
UPDI_BREAK_BAUD: Final[int] = 300

# Default operating baud rate
UPDI_DEFAULT_BAUD: Final[int] = 115200


# =============================================================================
# Instruction Families
# =============================================================================

UPDI_LDS: Final[int] = 0x00
UPDI_STS: Final[int] = 0x40
UPDI_LD: Final[int] = 0x20
UPDI_ST: Final[int] = 0x60
UPDI_LDCS: Final[int] = 0x80
UPDI_STCS: Final[int] = 0xC0
UPDI_REPEAT: Final[int] = 0xA0
UPDI_KEY: Final[int] = 0xE0

# Pointer access modifiers (LD/ST)
UPDI_PTR: Final[int] = 0x00
UPDI_PTR_INC: Final[int] = 0x04
UPDI_PTR_ADDRESS: Final[int] = 0x08

# Address size modifiers (LDS/STS)
UPDI_ADDRESS_8: Final[int] = 0x00
UPDI_ADDRESS_16: Final[int] = 0x04
UPDI_ADDRESS_24: Final[int] = 0x08

# Data size modifiers
UPDI_DATA_8: Final[int] = 0x00
UPDI_DATA_16: Final[int] = 0x01
UPDI_DATA_24: Final[int] = 0x02

# KEY sub-operations
UPDI_KEY_KEY: Final[int] = 0x00
UPDI_KEY_SIB: Final[int] = 0x04

# REPEAT counter width
UPDI_REPEAT_BYTE: Final[int] = 0x00
UPDI_REPEAT_WORD: Final[int] = 0x01

# Largest value the REPEAT counter holds (actual repetitions = value + 1)
UPDI_MAX_REPEAT_SIZE: Final[int] = 0xFF


# =============================================================================
# Key and SIB Sizes
# =============================================================================

class KeySize(IntEnum):
    """
    KEY instruction size class.

    The key length in bytes is 8 << size class.
    """

    KEY_64 = 0
    KEY_128 = 1
    KEY_256 = 2

    @property
    def length(self) -> int:
        """Required key length in bytes."""
        return 8 << self.value


class SibSize(IntEnum):
    """SIB read size class."""

    SIB_8BYTES = 0
    SIB_16BYTES = 1
    SIB_32BYTES = 2

    @property
    def length(self) -> int:
        """Number of bytes the target returns for this class."""
        return 8 << self.value

    @classmethod
    def from_length(cls, length: int) -> "SibSize":
        """Look up the size class for a SIB length of 8, 16 or 32 bytes."""
        for size in cls:
            if size.length == length:
                return size
        raise InvalidArgumentError(f"unsupported SIB length: {length} (expected 8, 16 or 32)")


# Number of bytes the target returns for a 32-byte SIB request
UPDI_SIB_LENGTH: Final[int] = 32

# Well-known 64-bit activation keys
UPDI_KEY_NVM: Final[bytes] = b"NVMProg "
UPDI_KEY_CHIPERASE: Final[bytes] = b"NVMErase"
UPDI_KEY_UROW: Final[bytes] = b"NVMUs&te"


# =============================================================================
# Control/Status Space
# =============================================================================

class CSRegister(IntEnum):
    """Register indices in the 4-bit Control/Status space."""

    STATUSA = 0x00
    STATUSB = 0x01
    CTRLA = 0x02
    CTRLB = 0x03
    ASI_KEY_STATUS = 0x07
    ASI_RESET_REQ = 0x08
    ASI_CTRLA = 0x09
    ASI_SYS_CTRLA = 0x0A
    ASI_SYS_STATUS = 0x0B
    ASI_CRC_STATUS = 0x0C


# CTRLA bits
UPDI_CTRLA_IBDLY_BIT: Final[int] = 7
UPDI_CTRLA_RSD_BIT: Final[int] = 3

# CTRLB bits
UPDI_CTRLB_CCDETDIS_BIT: Final[int] = 3
UPDI_CTRLB_UPDIDIS_BIT: Final[int] = 2

# CTRLA values written around a bulk RSD transfer:
# RSD set with guard time 2 cycles, then guard time only
UPDI_CTRLA_RSD_ENABLE: Final[int] = 0x0E
UPDI_CTRLA_RSD_DISABLE: Final[int] = 0x06

# STATUSA upper nibble holds the UPDI revision
UPDI_ASI_STATUSA_REVID: Final[int] = 4

# STATUSB lower bits hold the PESIG error signature
UPDI_ASI_STATUSB_PESIG: Final[int] = 0

# ASI_KEY_STATUS bits
UPDI_ASI_KEY_STATUS_CHIPERASE: Final[int] = 3
UPDI_ASI_KEY_STATUS_NVMPROG: Final[int] = 4
UPDI_ASI_KEY_STATUS_UROWWRITE: Final[int] = 5

# ASI_SYS_STATUS bits
UPDI_ASI_SYS_STATUS_RSTSYS: Final[int] = 5
UPDI_ASI_SYS_STATUS_INSLEEP: Final[int] = 4
UPDI_ASI_SYS_STATUS_NVMPROG: Final[int] = 3
UPDI_ASI_SYS_STATUS_UROWPROG: Final[int] = 2
UPDI_ASI_SYS_STATUS_LOCKSTATUS: Final[int] = 0

# Signature written to ASI_RESET_REQ to hold the target in reset
UPDI_RESET_REQ_VALUE: Final[int] = 0x59


# =============================================================================
# Addressing
# =============================================================================

class AddressMode(IntEnum):
    """
    Address width used for LDS/STS and pointer frames.

    The value is the number of address bytes on the wire.
    """

    ADDR_16 = 2
    ADDR_24 = 3

    @property
    def address_flag(self) -> int:
        """LDS/STS address size modifier for this mode."""
        return UPDI_ADDRESS_24 if self is AddressMode.ADDR_24 else UPDI_ADDRESS_16

    @property
    def pointer_flag(self) -> int:
        """Data size modifier used when loading the pointer register."""
        return UPDI_DATA_24 if self is AddressMode.ADDR_24 else UPDI_DATA_16

    @property
    def max_address(self) -> int:
        """Highest address expressible in this mode."""
        return (1 << (8 * self.value)) - 1

    @classmethod
    def from_bits(cls, bits: int) -> "AddressMode":
        """Look up a mode by its width in bits (16 or 24)."""
        if bits == 16:
            return cls.ADDR_16
        if bits == 24:
            return cls.ADDR_24
        raise InvalidArgumentError(f"unsupported address width: {bits} bits (expected 16 or 24)")
