"""
UPDI Testing Framework
======================

Tools for testing code that drives a UPDI link without hardware:

- SimulatedTarget: a Transport that decodes and answers UPDI instructions
- fixtures: pytest fixtures wiring a SimulatedTarget to an UpdiDatalink
"""

from .target import DEFAULT_SIB, DEFAULT_STATUSA, NACK, SimulatedTarget

__all__ = [
    "SimulatedTarget",
    "DEFAULT_SIB",
    "DEFAULT_STATUSA",
    "NACK",
]
