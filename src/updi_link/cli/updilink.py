"""
updilink - UPDI Diagnostic Command-Line Interface
=================================================

This module implements a small diagnostic tool for checking a SerialUPDI
setup: it opens the link, initialises the datalink and reports what the
target answers. It never writes target memory.

Hardware Setup
--------------
A USB-serial adapter with its TX and RX joined through a resistor
(typically 470 Ω to 1 kΩ on TX) drives the UPDI pin. Before using
updilink, ensure:
1. The target is powered and its UPDI pin is wired to the adapter
2. The serial port has proper permissions (dialout group on Linux)

Usage Examples
--------------
List available serial ports:
    $ updilink ports

Read the System Information Block:
    $ updilink -p /dev/ttyUSB0 sib

Dump the UPDI Control/Status registers:
    $ updilink status

Read 16 bytes of SRAM on a 24-bit part:
    $ updilink --address-mode 24 peek 0x3F00 --count 16

Defaults for --port, --baud and --address-mode come from the
UPDI_PORT, UPDI_BAUD and UPDI_ADDRESS_MODE environment variables.

Exit Codes
----------
0 - Success
1 - Link or communication error
2 - Invalid arguments or configuration error
3 - Internal error
"""

import logging
import sys
from typing import Optional

import click

from updi_link import __version__
from updi_link.cli.errors import ExitCode, handle_cli_exception
from updi_link.comms.constants import UPDI_ASI_STATUSA_REVID
from updi_link.comms import (
    AddressMode,
    CSRegister,
    UpdiDatalink,
    find_updi_port,
    format_port_list,
    list_serial_ports,
)
from updi_link.config import LinkConfig, open_link

# Configure logging
logger = logging.getLogger(__name__)

# Registers shown by the status command, in display order
STATUS_REGISTERS = (
    CSRegister.STATUSA,
    CSRegister.STATUSB,
    CSRegister.CTRLA,
    CSRegister.CTRLB,
    CSRegister.ASI_KEY_STATUS,
    CSRegister.ASI_SYS_STATUS,
)

# Bytes per line in peek output
PEEK_LINE_WIDTH = 16


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Holds the link configuration and verbosity.
    """

    def __init__(self) -> None:
        self.config: LinkConfig = LinkConfig()
        self.verbose: bool = False

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.WARNING
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    def connect(self) -> UpdiDatalink:
        """
        Open and initialise a link using the current configuration.

        Auto-detects the port when none was given.
        """
        if not self.config.port:
            self.config.port = find_updi_port()
        if not self.config.port:
            click.echo("Error: No serial port specified and auto-detect failed.", err=True)
            click.echo("Use --port option or 'updilink ports' to find available ports.", err=True)
            sys.exit(ExitCode.INVALID_ARGS)

        click.echo(f"Connecting to UPDI on {self.config.port}...")
        link = open_link(self.config, trace=trace_frame if self.verbose else None)
        try:
            link.init()
        except Exception:
            link.close()
            raise
        return link


pass_context = click.make_pass_decorator(Context, ensure=True)


def trace_frame(direction: str, data: bytes) -> None:
    """Print one traced frame to stderr."""
    arrow = ">>" if direction == "send" else "<<"
    click.echo(f"{arrow} {data.hex(' ')}", err=True)


def parse_int(ctx, param, value: Optional[str]) -> Optional[int]:
    """Click callback accepting decimal, 0x hex or 0b binary integers."""
    if value is None:
        return None
    try:
        return int(value, 0)
    except ValueError:
        raise click.BadParameter(f"not an integer: {value!r}")


def format_sib(sib: bytes) -> str:
    """Printable part of a SIB, stopping at the first NUL."""
    text = sib.split(b"\x00", 1)[0]
    return text.decode("ascii", errors="replace")


def hex_dump(address: int, data: bytes) -> str:
    """Format bytes as address-prefixed hex lines."""
    lines = []
    for offset in range(0, len(data), PEEK_LINE_WIDTH):
        chunk = data[offset:offset + PEEK_LINE_WIDTH]
        lines.append(f"{address + offset:06X}: {chunk.hex(' ')}")
    return "\n".join(lines)


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (default: $UPDI_PORT, else auto-detect)",
)
@click.option(
    "-b", "--baud",
    type=click.IntRange(min=1),
    default=None,
    help="Operating baud rate (default: $UPDI_BAUD or 115200)",
)
@click.option(
    "--address-mode",
    type=click.Choice(["16", "24"]),
    default=None,
    help="Address width in bits (default: $UPDI_ADDRESS_MODE or 16)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output and frame trace",
)
@click.version_option(version=__version__, prog_name="updilink")
@pass_context
def main(
    ctx: Context,
    port: Optional[str],
    baud: Optional[int],
    address_mode: Optional[str],
    verbose: bool,
) -> None:
    """
    Diagnose a UPDI connection through a SerialUPDI adapter.

    Use 'updilink ports' to list available serial ports.
    """
    ctx.verbose = verbose
    ctx.setup_logging()

    ctx.config = LinkConfig.from_env()
    if port:
        ctx.config.port = port
    if baud:
        ctx.config.baudrate = baud
    if address_mode:
        ctx.config.address_mode = AddressMode.from_bits(int(address_mode))


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
def ports(detailed: bool) -> None:
    """
    List available serial ports.

    Shows all serial ports detected on the system. USB-serial adapters
    are marked with their vendor (e.g., WCH, FTDI).

    Example:
        updilink ports
        updilink ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Connect your USB-serial adapter")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    auto_port = find_updi_port()
    if auto_port:
        click.echo(f"\nSuggested port for UPDI: {auto_port}")
    else:
        click.echo("\nNo USB-serial adapter auto-detected.")


# =============================================================================
# SIB Command
# =============================================================================

@main.command()
@pass_context
def sib(ctx: Context) -> None:
    """
    Read the System Information Block.

    The SIB names the device family, NVM and OCD versions and the
    UPDI revision, e.g. "tinyAVR P:0D:0-3M2 (01.59B14.0)".
    """
    try:
        link = ctx.connect()
        try:
            data = link.read_sib()
        finally:
            link.close()
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)

    click.echo(f"SIB: {format_sib(data)}")
    click.echo(f"Raw: {data.hex(' ')}")


# =============================================================================
# Status Command
# =============================================================================

@main.command()
@pass_context
def status(ctx: Context) -> None:
    """
    Show the UPDI Control/Status registers.

    Reads STATUSA, STATUSB, CTRLA, CTRLB, ASI_KEY_STATUS and
    ASI_SYS_STATUS.
    """
    try:
        link = ctx.connect()
        try:
            values = {register: link.ldcs(register) for register in STATUS_REGISTERS}
        finally:
            link.close()
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)

    for register, value in values.items():
        click.echo(f"{register.name:<16} 0x{value:02X}")
    click.echo(f"\nUPDI revision: {values[CSRegister.STATUSA] >> UPDI_ASI_STATUSA_REVID}")


# =============================================================================
# Peek Command
# =============================================================================

@main.command()
@click.argument("address", callback=parse_int)
@click.option(
    "--count", "-n",
    type=click.IntRange(min=1),
    default=1,
    help="Number of bytes to read (default: 1)",
)
@pass_context
def peek(ctx: Context, address: int, count: int) -> None:
    """
    Read bytes from target memory with direct loads.

    ADDRESS accepts decimal or 0x-prefixed hex.

    Example:
        updilink peek 0x1100
        updilink peek 0x3F00 --count 16
    """
    try:
        link = ctx.connect()
        try:
            data = bytes(link.ld(address + offset) for offset in range(count))
        finally:
            link.close()
    except Exception as e:
        handle_cli_exception(e, ctx.verbose)

    click.echo(hex_dump(address, data))


if __name__ == "__main__":
    main()
