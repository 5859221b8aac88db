"""
updi-link Command-Line Interface
================================

This package provides the `updilink` diagnostic tool: list serial ports,
read the System Information Block, dump Control/Status registers and
peek at target memory through a SerialUPDI adapter.

The tool is a Click-based application built on `updi_link.comms`.
"""

__all__ = ["updilink"]
