"""
UPDI Testing Framework - Simulated Target
=========================================

An in-memory UPDI target that plugs in as a Transport. It behaves like
a SerialUPDI adapter wired to a real device:

- Everything sent is echoed back (half-duplex wire)
- Instruction bytes are decoded and answered: LDCS/STCS, LDS/STS,
  LD/ST (pointer and pointer post-increment), REPEAT, KEY and SIB
- Bytes sent at 300 baud 8E1 are treated as breaks and reset the decoder
- Reads return whatever is buffered, short when the "wire" is idle,
  the same way pyserial returns on timeout

Failure scripting:
- statusa_script: values returned by successive LDCS STATUSA reads
- nack_store_unit: pointer-store unit index (0-based) answered with NACK
- nack_direct_ack: direct store answered with NACK in place of its first
  (1) or trailing (2) ACK; the data is not stored
- responsive: when False the target only echoes
- fail_configure_baud / fail_send: make the transport itself fail
- fail_send_at: index into sent of the operating-baud send that fails

Example:
    target = SimulatedTarget()
    target.load_memory(0x1234, b"\\x5A")
    link = UpdiDatalink(target)
    link.open()
    link.init()
    assert link.ld(0x1234) == 0x5A
"""

from __future__ import annotations

from typing import Generator, Optional

from updi_link.comms.constants import (
    UPDI_ASI_KEY_STATUS_CHIPERASE,
    UPDI_ASI_KEY_STATUS_NVMPROG,
    UPDI_ASI_KEY_STATUS_UROWWRITE,
    UPDI_BREAK_BAUD,
    UPDI_CTRLA_RSD_BIT,
    UPDI_KEY,
    UPDI_KEY_CHIPERASE,
    UPDI_KEY_NVM,
    UPDI_KEY_SIB,
    UPDI_KEY_UROW,
    UPDI_LD,
    UPDI_LDCS,
    UPDI_LDS,
    UPDI_PHY_ACK,
    UPDI_PHY_SYNC,
    UPDI_PTR_ADDRESS,
    UPDI_REPEAT,
    UPDI_ST,
    UPDI_STCS,
    UPDI_STS,
    CSRegister,
)
from updi_link.comms.transport import FrameFormat, Transport
from updi_link.errors import Stage, TransportError


# Byte sent in place of ACK when a store is rejected
NACK: int = 0x00

# Default SIB of an ATtiny817-class part
DEFAULT_SIB: bytes = b"tinyAVR P:0D:0-3M2 (01.59B14.0)".ljust(32, b"\x00")

# STATUSA after reset: UPDI revision 3
DEFAULT_STATUSA: int = 0x30

_KEY_STATUS_BITS = {
    UPDI_KEY_NVM: UPDI_ASI_KEY_STATUS_NVMPROG,
    UPDI_KEY_CHIPERASE: UPDI_ASI_KEY_STATUS_CHIPERASE,
    UPDI_KEY_UROW: UPDI_ASI_KEY_STATUS_UROWWRITE,
}

# Decoder coroutine: receives one byte at a time
_Decoder = Generator[None, int, None]


class SimulatedTarget(Transport):
    """
    Simulated UPDI target exposed through the Transport interface.

    Attributes:
        memory: Sparse data space, unwritten addresses read as 0xFF
        cs: Control/Status register file (16 entries)
        pointer: Pointer register
        repeat_count: Pending REPEAT value (repetitions - 1)
        sent: Every buffer passed to send(), in order
        keys: Every key received, as it appeared on the wire
        calls: Log of configure/drain/close calls
        stored_units: Number of pointer-store units accepted
    """

    def __init__(
        self,
        sib: bytes = DEFAULT_SIB,
        statusa: int = DEFAULT_STATUSA,
        statusa_script: Optional[list[int]] = None,
        nack_store_unit: Optional[int] = None,
        nack_direct_ack: Optional[int] = None,
        responsive: bool = True,
        fail_configure_baud: Optional[int] = None,
        fail_send: bool = False,
        fail_send_at: Optional[int] = None,
    ):
        self.memory: dict[int, int] = {}
        self.cs: list[int] = [0] * 16
        self.cs[CSRegister.STATUSA] = statusa
        self.sib = sib
        self.statusa_script: list[int] = list(statusa_script or [])
        self.nack_store_unit = nack_store_unit
        self.nack_direct_ack = nack_direct_ack
        self.responsive = responsive
        self.fail_configure_baud = fail_configure_baud
        self.fail_send = fail_send
        self.fail_send_at = fail_send_at

        self.pointer = 0
        self.repeat_count = 0
        self.stored_units = 0

        self.sent: list[bytes] = []
        self.keys: list[bytes] = []
        self.calls: list[tuple] = []
        self.breaks = 0

        self.baudrate: Optional[int] = None
        self.frame_format: Optional[FrameFormat] = None
        self._open = False
        self._rx = bytearray()
        self._decoder = self._new_decoder()

    # -------------------------------------------------------------------------
    # Test Helpers
    # -------------------------------------------------------------------------

    def load_memory(self, address: int, data: bytes) -> None:
        """Preload target memory."""
        for offset, value in enumerate(data):
            self.memory[address + offset] = value

    def read_memory(self, address: int, size: int) -> bytes:
        """Read target memory without going through the link."""
        return bytes(self.memory.get(address + i, 0xFF) for i in range(size))

    @property
    def wire(self) -> bytes:
        """Everything sent at the operating baud rate, concatenated."""
        return b"".join(self.sent)

    @property
    def double_breaks(self) -> int:
        """Number of times the channel was reopened at break baud rate."""
        return sum(
            1 for call in self.calls
            if call[0] == "configure" and call[1] == UPDI_BREAK_BAUD
        )

    @property
    def rsd_enabled(self) -> bool:
        return bool(self.cs[CSRegister.CTRLA] & (1 << UPDI_CTRLA_RSD_BIT))

    # -------------------------------------------------------------------------
    # Transport Interface
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def configure(self, baudrate: int, frame_format: FrameFormat) -> None:
        self.calls.append(("configure", baudrate, frame_format))
        if baudrate == self.fail_configure_baud:
            raise TransportError(
                f"cannot open simulated port at {baudrate} baud",
                stage=Stage.CONFIGURE,
            )
        self.baudrate = baudrate
        self.frame_format = frame_format
        self._open = True

    def send(self, data: bytes) -> int:
        if not self._open:
            raise TransportError("simulated port is not open", stage=Stage.SEND)
        if self.fail_send:
            raise TransportError("simulated write failure", stage=Stage.SEND)
        if self.baudrate != UPDI_BREAK_BAUD and len(self.sent) == self.fail_send_at:
            raise TransportError(
                f"simulated write failure at send {self.fail_send_at}", stage=Stage.SEND
            )

        data = bytes(data)
        self._rx.extend(data)

        if self.baudrate == UPDI_BREAK_BAUD:
            self.breaks += data.count(0)
            self._decoder = self._new_decoder()
            return len(data)

        self.sent.append(data)
        if self.responsive:
            for byte in data:
                self._decoder.send(byte)
        return len(data)

    def receive(self, count: int) -> bytes:
        if not self._open:
            raise TransportError("simulated port is not open", stage=Stage.RECEIVE)
        data = bytes(self._rx[:count])
        del self._rx[:count]
        return data

    def drain(self) -> None:
        self.calls.append(("drain",))
        self._rx.clear()

    def close(self) -> None:
        self.calls.append(("close",))
        self._open = False
        self._rx.clear()

    # -------------------------------------------------------------------------
    # Instruction Decoder
    # -------------------------------------------------------------------------

    def _new_decoder(self) -> _Decoder:
        decoder = self._decode()
        next(decoder)
        return decoder

    def _respond(self, data) -> None:
        self._rx.extend(data)

    def _ack(self) -> None:
        if not self.rsd_enabled:
            self._respond([UPDI_PHY_ACK])

    def _decode(self) -> _Decoder:
        while True:
            if (yield) != UPDI_PHY_SYNC:
                continue
            opcode = yield
            family = opcode & 0xE0

            if family == UPDI_LDCS:
                self._respond([self._load_cs(opcode & 0x0F)])

            elif family == UPDI_STCS:
                self.cs[opcode & 0x0F] = yield

            elif family == UPDI_LDS:
                address = yield from self._read_int(((opcode >> 2) & 0x03) + 1)
                self._respond(self.read_memory(address, (opcode & 0x03) + 1))

            elif family == UPDI_STS:
                address = yield from self._read_int(((opcode >> 2) & 0x03) + 1)
                if self.nack_direct_ack == 1:
                    self._respond([NACK])
                    continue
                self._ack()
                values = []
                for _ in range((opcode & 0x03) + 1):
                    values.append((yield))
                if self.nack_direct_ack == 2:
                    self._respond([NACK])
                    continue
                self.load_memory(address, bytes(values))
                self._ack()

            elif family == UPDI_LD:
                width = (opcode & 0x03) + 1
                for _ in range(self.repeat_count + 1):
                    self._respond(self.read_memory(self.pointer, width))
                    if opcode & 0x04:
                        self.pointer += width
                self.repeat_count = 0

            elif family == UPDI_ST and (opcode & 0x0C) == UPDI_PTR_ADDRESS:
                self.pointer = yield from self._read_int((opcode & 0x03) + 1)
                self._ack()

            elif family == UPDI_ST:
                yield from self._store_pointer(opcode)

            elif family == UPDI_REPEAT:
                self.repeat_count = yield from self._read_int((opcode & 0x03) + 1)

            elif family == UPDI_KEY and opcode & UPDI_KEY_SIB:
                self._respond(self.sib[:8 << (opcode & 0x03)])

            elif family == UPDI_KEY:
                key = yield from self._read_bytes(8 << (opcode & 0x03))
                self._accept_key(key)

    def _store_pointer(self, opcode: int) -> _Decoder:
        width = (opcode & 0x03) + 1
        units = self.repeat_count + 1
        self.repeat_count = 0
        for _ in range(units):
            data = yield from self._read_bytes(width)
            if self.stored_units == self.nack_store_unit:
                self._respond([NACK])
                return
            for offset, value in enumerate(data):
                self.memory[self.pointer + offset] = value
            if opcode & 0x04:
                self.pointer += width
            self.stored_units += 1
            self._ack()

    def _read_bytes(self, count: int) -> Generator[None, int, bytes]:
        data = bytearray()
        for _ in range(count):
            data.append((yield))
        return bytes(data)

    def _read_int(self, count: int) -> Generator[None, int, int]:
        data = yield from self._read_bytes(count)
        return int.from_bytes(data, "little")

    def _load_cs(self, register: int) -> int:
        if register == CSRegister.STATUSA and self.statusa_script:
            return self.statusa_script.pop(0)
        return self.cs[register]

    def _accept_key(self, key: bytes) -> None:
        self.keys.append(key)
        bit = _KEY_STATUS_BITS.get(key[::-1])
        if bit is not None:
            self.cs[CSRegister.ASI_KEY_STATUS] |= 1 << bit
