"""
Tests for the UPDI Transport and Physical Layers
================================================

This module tests the components below the datalink:
- Error hierarchy and stage reporting
- Wire constants and enumerations
- Serial frame formats
- Serial port enumeration and the pyserial transport (mocked)
- The physical framer: echo consumption, receive semantics,
  double break and trace observer

Test Categories
---------------
1. Error Tests: Hierarchy and message format
2. Constant Tests: Address modes, key sizes, frame formats
3. Serial Tests: Port detection and SerialTransport with a mocked port
4. Physical Tests: UpdiPhysical with a mocked transport and the simulator

Note: Hardware-dependent tests are marked with @pytest.mark.hardware
and are skipped by default. Run with --hardware flag to include them.
"""

import logging

import pytest
import serial
from unittest.mock import Mock, call, patch

from updi_link.comms.constants import (
    UPDI_ADDRESS_16,
    UPDI_ADDRESS_24,
    UPDI_BREAK_BAUD,
    UPDI_DATA_16,
    UPDI_DATA_24,
    AddressMode,
    KeySize,
    SibSize,
)
from updi_link.comms.physical import LinkState, UpdiPhysical
from updi_link.comms.serial import (
    PortInfo,
    SerialTransport,
    find_updi_port,
    format_port_list,
    list_serial_ports,
)
from updi_link.comms.transport import FrameFormat, Transport
from updi_link.errors import (
    AckError,
    InvalidArgumentError,
    InvalidKeyLengthError,
    LinkInitError,
    NoResponseError,
    ProtocolError,
    Stage,
    TransportError,
    UpdiError,
)
from updi_link.testkit import DEFAULT_SIB, SimulatedTarget


def make_transport() -> Mock:
    """Mock transport that echoes nothing unless told otherwise."""
    transport = Mock(spec=Transport)
    transport.send.side_effect = lambda data: len(data)
    transport.receive.side_effect = lambda count: bytes(count)
    return transport


# =============================================================================
# Error Tests
# =============================================================================

class TestErrors:
    """Tests for the exception hierarchy."""

    def test_hierarchy(self):
        """All link errors derive from UpdiError."""
        assert issubclass(NoResponseError, TransportError)
        assert issubclass(AckError, ProtocolError)
        assert issubclass(InvalidKeyLengthError, InvalidArgumentError)
        for cls in (TransportError, ProtocolError, InvalidArgumentError, LinkInitError):
            assert issubclass(cls, UpdiError)

    def test_invalid_argument_is_value_error(self):
        """InvalidArgumentError is also a ValueError."""
        with pytest.raises(ValueError):
            raise InvalidArgumentError("bad")

    def test_message_without_stage(self):
        """Message is unchanged when no stage is given."""
        assert str(ProtocolError("odd reply")) == "odd reply"

    def test_message_with_stage(self):
        """Stage is prefixed to the message."""
        error = TransportError("port vanished", stage=Stage.SEND)
        assert str(error) == "send failed: port vanished"
        assert error.message == "port vanished"

    def test_no_response_defaults_to_receive_stage(self):
        """NoResponseError reports the receive stage and expected count."""
        error = NoResponseError("silence", expected=2)
        assert error.stage is Stage.RECEIVE
        assert error.expected == 2

    def test_ack_error_reports_received_byte(self):
        """AckError includes the byte that came instead of ACK."""
        error = AckError("ack expected", received=0x00)
        assert error.stage is Stage.ACK
        assert error.received == 0
        assert "got 0x00" in str(error)

    def test_ack_error_without_byte(self):
        """AckError without a received byte has no suffix."""
        assert str(AckError()) == "ACK check failed: ack expected"

    def test_invalid_key_length_message(self):
        """InvalidKeyLengthError names both lengths."""
        error = InvalidKeyLengthError(expected=8, actual=7)
        assert error.stage is Stage.ARGUMENT
        assert (error.expected, error.actual) == (8, 7)
        assert "expected 8 bytes, got 7" in str(error)

    def test_link_init_error_stage(self):
        """LinkInitError reports the init stage."""
        assert LinkInitError().stage is Stage.INIT


# =============================================================================
# Constant Tests
# =============================================================================

class TestAddressMode:
    """Tests for AddressMode."""

    def test_address_bytes(self):
        """Mode value is the number of address bytes."""
        assert AddressMode.ADDR_16 == 2
        assert AddressMode.ADDR_24 == 3

    def test_flags(self):
        """Address and pointer flags follow the width."""
        assert AddressMode.ADDR_16.address_flag == UPDI_ADDRESS_16
        assert AddressMode.ADDR_24.address_flag == UPDI_ADDRESS_24
        assert AddressMode.ADDR_16.pointer_flag == UPDI_DATA_16
        assert AddressMode.ADDR_24.pointer_flag == UPDI_DATA_24

    def test_max_address(self):
        """Highest address per width."""
        assert AddressMode.ADDR_16.max_address == 0xFFFF
        assert AddressMode.ADDR_24.max_address == 0xFFFFFF

    def test_from_bits(self):
        """Look up by bit width."""
        assert AddressMode.from_bits(16) is AddressMode.ADDR_16
        assert AddressMode.from_bits(24) is AddressMode.ADDR_24

    def test_from_bits_invalid(self):
        """Other widths are rejected."""
        with pytest.raises(InvalidArgumentError):
            AddressMode.from_bits(8)


class TestKeySize:
    """Tests for KeySize."""

    def test_lengths(self):
        """Key length is 8 << size class."""
        assert KeySize.KEY_64.length == 8
        assert KeySize.KEY_128.length == 16
        assert KeySize.KEY_256.length == 32


class TestSibSize:
    """Tests for SibSize."""

    @pytest.mark.parametrize("length,size", [
        (8, SibSize.SIB_8BYTES),
        (16, SibSize.SIB_16BYTES),
        (32, SibSize.SIB_32BYTES),
    ])
    def test_from_length(self, length, size):
        """Each SIB length maps to its size class."""
        assert SibSize.from_length(length) is size
        assert size.length == length

    @pytest.mark.parametrize("length", [0, 4, 24, 64])
    def test_from_length_invalid(self, length):
        """Other lengths are argument errors."""
        with pytest.raises(InvalidArgumentError):
            SibSize.from_length(length)


class TestFrameFormat:
    """Tests for FrameFormat."""

    def test_break_format(self):
        """Break format is 8 data bits, even parity, 1 stop bit."""
        settings = FrameFormat.SERIAL_8E1.settings
        assert (settings.bytesize, settings.parity, settings.stopbits) == (8, "E", 1)

    def test_operating_format(self):
        """Operating format uses 2 stop bits."""
        assert FrameFormat.SERIAL_8E2.settings.stopbits == 2

    def test_str(self):
        """String form is the usual shorthand."""
        assert str(FrameFormat.SERIAL_8E2) == "8E2"
        assert str(FrameFormat.SERIAL_8E1) == "8E1"


# =============================================================================
# Serial Port Tests
# =============================================================================

def make_port(device, vid=None, pid=None, description="USB Serial"):
    """Fake entry as returned by serial.tools.list_ports.comports()."""
    return Mock(
        device=device,
        description=description,
        manufacturer=None,
        serial_number=None,
        vid=vid,
        pid=pid,
    )


class TestSerialPorts:
    """Tests for serial port utilities."""

    def test_port_info_usb(self):
        """PortInfo with a known VID names the vendor."""
        info = PortInfo("/dev/ttyUSB0", "USB Serial", None, None, 0x1A86, 0x7523)
        assert info.is_usb
        assert info.vendor_name == "QinHeng"
        assert "QinHeng" in str(info)

    def test_port_info_non_usb(self):
        """PortInfo without VID/PID should not be USB."""
        info = PortInfo("/dev/ttyS0", "Serial Port", None, None, None, None)
        assert not info.is_usb
        assert info.vendor_name is None

    def test_format_port_list_empty(self):
        """Empty port list should show message."""
        assert "No serial ports" in format_port_list([])

    def test_format_port_list_detailed(self):
        """Detailed listing shows VID:PID."""
        ports = [PortInfo("/dev/ttyUSB0", "USB Serial", "FTDI", "A1", 0x0403, 0x6001)]
        result = format_port_list(ports, verbose=True)
        assert "0403:6001" in result
        assert "Serial: A1" in result

    @patch("updi_link.comms.serial.serial.tools.list_ports.comports")
    def test_list_serial_ports(self, comports):
        """Ports are converted to PortInfo."""
        comports.return_value = [make_port("/dev/ttyUSB0", 0x0403, 0x6001)]
        ports = list_serial_ports()
        assert ports == [PortInfo("/dev/ttyUSB0", "USB Serial", None, None, 0x0403, 0x6001)]

    @patch("updi_link.comms.serial.serial.tools.list_ports.comports")
    def test_find_prefers_ch340(self, comports):
        """CH340 adapters win over FTDI regardless of order."""
        comports.return_value = [
            make_port("/dev/ttyS0"),
            make_port("/dev/ttyUSB0", 0x0403, 0x6001),
            make_port("/dev/ttyUSB1", 0x1A86, 0x7523),
        ]
        assert find_updi_port() == "/dev/ttyUSB1"

    @patch("updi_link.comms.serial.serial.tools.list_ports.comports")
    def test_find_falls_back_to_first_usb(self, comports):
        """Unknown USB adapters are used when nothing better exists."""
        comports.return_value = [
            make_port("/dev/ttyS0"),
            make_port("/dev/ttyACM0", 0x2341, 0x0043),
        ]
        assert find_updi_port() == "/dev/ttyACM0"

    @patch("updi_link.comms.serial.serial.tools.list_ports.comports")
    def test_find_none(self, comports):
        """No USB ports means no suggestion."""
        comports.return_value = [make_port("/dev/ttyS0")]
        assert find_updi_port() is None


class TestSerialTransport:
    """Tests for SerialTransport with a mocked pyserial port."""

    @patch("updi_link.comms.serial.serial.Serial")
    def test_configure_opens_port(self, serial_cls):
        """First configure opens the port with the requested framing."""
        transport = SerialTransport("/dev/ttyUSB0", timeout=0.2)
        transport.configure(115200, FrameFormat.SERIAL_8E2)

        kwargs = serial_cls.call_args.kwargs
        assert kwargs["port"] == "/dev/ttyUSB0"
        assert kwargs["baudrate"] == 115200
        assert kwargs["parity"] == serial.PARITY_EVEN
        assert kwargs["stopbits"] == serial.STOPBITS_TWO
        assert kwargs["timeout"] == 0.2

    @patch("updi_link.comms.serial.serial.Serial")
    def test_configure_reconfigures_open_port(self, serial_cls):
        """Configure on an open port changes settings in place."""
        port = serial_cls.return_value
        port.is_open = True
        transport = SerialTransport("/dev/ttyUSB0")
        transport.configure(115200, FrameFormat.SERIAL_8E2)
        transport.configure(UPDI_BREAK_BAUD, FrameFormat.SERIAL_8E1)

        assert serial_cls.call_count == 1
        assert port.baudrate == UPDI_BREAK_BAUD
        assert port.stopbits == serial.STOPBITS_ONE

    @patch("updi_link.comms.serial.serial.Serial")
    def test_configure_permission_denied(self, serial_cls):
        """Permission errors are reported with a hint."""
        serial_cls.side_effect = serial.SerialException(
            "[Errno 13] could not open port: Permission denied"
        )
        transport = SerialTransport("/dev/ttyUSB0")
        with pytest.raises(TransportError) as exc_info:
            transport.configure(115200, FrameFormat.SERIAL_8E2)
        assert exc_info.value.stage is Stage.CONFIGURE
        assert "dialout" in str(exc_info.value)
        assert not transport.is_open

    @patch("updi_link.comms.serial.serial.Serial")
    def test_send_and_receive(self, serial_cls):
        """Send writes and flushes; receive reads."""
        port = serial_cls.return_value
        port.is_open = True
        port.write.return_value = 3
        port.read.return_value = b"\x40"

        transport = SerialTransport("/dev/ttyUSB0")
        transport.configure(115200, FrameFormat.SERIAL_8E2)

        assert transport.send(b"\x55\x80\x00") == 3
        port.flush.assert_called_once()
        assert transport.receive(1) == b"\x40"
        port.read.assert_called_once_with(1)

    @patch("updi_link.comms.serial.serial.Serial")
    def test_write_failure(self, serial_cls):
        """Write errors become TransportError."""
        port = serial_cls.return_value
        port.is_open = True
        port.write.side_effect = serial.SerialException("device reports readiness")

        transport = SerialTransport("/dev/ttyUSB0")
        transport.configure(115200, FrameFormat.SERIAL_8E2)
        with pytest.raises(TransportError) as exc_info:
            transport.send(b"\x55")
        assert exc_info.value.stage is Stage.SEND

    def test_io_on_closed_port(self):
        """I/O before configure raises TransportError."""
        transport = SerialTransport("/dev/ttyUSB0")
        with pytest.raises(TransportError):
            transport.send(b"\x55")
        with pytest.raises(TransportError):
            transport.receive(1)

    @patch("updi_link.comms.serial.serial.Serial")
    def test_close_is_idempotent(self, serial_cls):
        """Close releases the port once and never raises."""
        port = serial_cls.return_value
        port.is_open = True
        port.close.side_effect = serial.SerialException("gone")

        transport = SerialTransport("/dev/ttyUSB0")
        transport.configure(115200, FrameFormat.SERIAL_8E2)
        transport.close()
        transport.close()

        port.close.assert_called_once()
        assert not transport.is_open


# =============================================================================
# Physical Layer Tests
# =============================================================================

class TestPhysicalIO:
    """Tests for UpdiPhysical send/receive."""

    def test_send_on_closed_link(self):
        """Sending before open fails without touching the transport."""
        transport = make_transport()
        phy = UpdiPhysical(transport)
        with pytest.raises(TransportError):
            phy.send(b"\x55\x80")
        transport.send.assert_not_called()

    def test_open_configures_and_drains(self):
        """Open configures 8E2 at the operating rate, then drains."""
        transport = make_transport()
        phy = UpdiPhysical(transport, baudrate=230400)
        phy.open()
        assert transport.mock_calls == [
            call.configure(230400, FrameFormat.SERIAL_8E2),
            call.drain(),
        ]
        assert phy.state is LinkState.OPENED

    def test_send_consumes_echo(self):
        """Every send is followed by a read of the same length."""
        transport = make_transport()
        phy = UpdiPhysical(transport)
        phy.open()
        transport.reset_mock()

        assert phy.send(b"\x55\xc3\x08") == 3
        assert transport.mock_calls == [
            call.send(b"\x55\xc3\x08"),
            call.receive(3),
        ]

    def test_echo_mismatch_is_logged(self, caplog):
        """A short echo is a warning, not an error."""
        transport = make_transport()
        transport.receive.side_effect = lambda count: b"\x55"
        phy = UpdiPhysical(transport)
        phy.open()

        with caplog.at_level(logging.WARNING, logger="updi_link.comms.physical"):
            phy.send(b"\x55\x80")
        assert "Echo length mismatch" in caplog.text

    def test_receive_returns_partial_data(self):
        """A short read is returned as-is."""
        transport = make_transport()
        transport.receive.side_effect = lambda count: b"\x01"
        phy = UpdiPhysical(transport)
        phy.open()
        assert phy.receive(4) == b"\x01"

    def test_receive_nothing_is_no_response(self):
        """Silence raises NoResponseError."""
        transport = make_transport()
        transport.receive.side_effect = lambda count: b""
        phy = UpdiPhysical(transport)
        phy.open()
        with pytest.raises(NoResponseError) as exc_info:
            phy.receive(1)
        assert exc_info.value.expected == 1

    def test_receive_transport_failure_is_no_response(self):
        """A failing read is reported as an unresponsive target."""
        transport = make_transport()
        phy = UpdiPhysical(transport)
        phy.open()
        transport.receive.side_effect = TransportError("read failed", stage=Stage.RECEIVE)
        with pytest.raises(NoResponseError) as exc_info:
            phy.receive(1)
        assert isinstance(exc_info.value.__cause__, TransportError)

    def test_close_is_safe_in_any_state(self):
        """Close never raises, even if the transport does."""
        transport = make_transport()
        transport.close.side_effect = OSError("already gone")
        phy = UpdiPhysical(transport)
        phy.close()
        phy.open()
        phy.close()
        assert phy.state is LinkState.CLOSED

    def test_trace_observer(self):
        """Trace callback sees every frame sent and received."""
        frames = []
        transport = make_transport()
        phy = UpdiPhysical(transport, trace=lambda d, data: frames.append((d, data)))
        phy.open()
        phy.send(b"\x55\x80")
        phy.receive(1)
        assert frames == [("send", b"\x55\x80"), ("receive", b"\x00")]


class TestDoubleBreak:
    """Tests for the double-break resynchronisation."""

    def test_sequence(self, no_settle_delay):
        """Reopen at 300 8E1, two breaks, reopen at operating rate 8E2."""
        transport = make_transport()
        phy = UpdiPhysical(transport, baudrate=115200)
        phy.open()
        transport.reset_mock()

        phy.send_double_break()

        assert transport.mock_calls == [
            call.close(),
            call.configure(UPDI_BREAK_BAUD, FrameFormat.SERIAL_8E1),
            call.drain(),
            call.send(b"\x00"),
            call.receive(1),
            call.send(b"\x00"),
            call.receive(1),
            call.close(),
            call.configure(115200, FrameFormat.SERIAL_8E2),
            call.drain(),
        ]
        assert no_settle_delay == [0.1]
        assert phy.state is LinkState.SYNCHRONIZED

    def test_against_simulated_target(self, no_settle_delay):
        """The simulator sees two break characters."""
        target = SimulatedTarget()
        phy = UpdiPhysical(target)
        phy.open()
        phy.send_double_break()
        assert target.breaks == 2
        assert target.double_breaks == 1
        assert target.baudrate == 115200
        assert target.frame_format is FrameFormat.SERIAL_8E2

    def test_reopen_failure(self, no_settle_delay):
        """A failed reopen raises TransportError."""
        target = SimulatedTarget(fail_configure_baud=UPDI_BREAK_BAUD)
        phy = UpdiPhysical(target)
        phy.open()
        with pytest.raises(TransportError) as exc_info:
            phy.send_double_break()
        assert exc_info.value.stage is Stage.CONFIGURE


class TestPhysicalSib:
    """Tests for the SIB read at the physical layer."""

    def test_sib(self, no_settle_delay):
        """SIB command is 55 E6 and returns 32 bytes."""
        target = SimulatedTarget()
        phy = UpdiPhysical(target)
        phy.open()
        phy.send_double_break()
        assert phy.sib() == DEFAULT_SIB
        assert target.sent[-1] == b"\x55\xe6"

    def test_short_sib(self, no_settle_delay):
        """An 8-byte SIB uses size class 0 and leaves nothing buffered."""
        target = SimulatedTarget()
        phy = UpdiPhysical(target)
        phy.open()
        phy.send_double_break()
        assert phy.sib(8) == DEFAULT_SIB[:8]
        assert target.sent[-1] == b"\x55\xe4"
        assert target.receive(64) == b""

    def test_invalid_sib_length(self):
        """An unsupported length is rejected before any transport call."""
        transport = Mock(spec=Transport)
        phy = UpdiPhysical(transport)
        with pytest.raises(InvalidArgumentError):
            phy.sib(20)
        assert transport.mock_calls == []
