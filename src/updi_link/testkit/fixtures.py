"""
UPDI Testing Framework - Pytest Fixtures
========================================

Pytest fixtures for link-layer testing against a simulated target:

    no_settle_delay - Patch out the 100 ms double-break settle delay
    target          - Fresh SimulatedTarget
    link            - Opened (not initialised) UpdiDatalink on `target`
    link24          - Same, with 24-bit addressing
    ready_link      - Opened and initialised UpdiDatalink

Usage:
    In your conftest.py, import these fixtures so pytest discovers them:

        from updi_link.testkit.fixtures import target, link, ready_link

    Then use in tests:

        def test_something(ready_link, target):
            target.load_memory(0x1234, b"\\x42")
            assert ready_link.ld(0x1234) == 0x42
"""

from __future__ import annotations

from typing import Generator

import pytest

from updi_link.comms.constants import AddressMode
from updi_link.comms.link import UpdiDatalink

from .target import SimulatedTarget


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURE IMPLEMENTATIONS
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def no_settle_delay(monkeypatch) -> list[float]:
    """
    Fixture: Replace the double-break settle sleep with a recorder.

    Returns the list of requested delays.
    """
    delays: list[float] = []
    monkeypatch.setattr(
        "updi_link.comms.physical.time.sleep", lambda seconds: delays.append(seconds)
    )
    return delays


@pytest.fixture
def target() -> SimulatedTarget:
    """Fixture: Fresh simulated target."""
    return SimulatedTarget()


@pytest.fixture
def link(target: SimulatedTarget, no_settle_delay) -> Generator[UpdiDatalink, None, None]:
    """Fixture: Opened 16-bit link; session not initialised."""
    updi = UpdiDatalink(target)
    updi.open()
    yield updi
    updi.close()


@pytest.fixture
def link24(target: SimulatedTarget, no_settle_delay) -> Generator[UpdiDatalink, None, None]:
    """Fixture: Opened 24-bit link; session not initialised."""
    updi = UpdiDatalink(target, address_mode=AddressMode.ADDR_24)
    updi.open()
    yield updi
    updi.close()


@pytest.fixture
def ready_link(link: UpdiDatalink) -> UpdiDatalink:
    """Fixture: Opened and initialised 16-bit link."""
    link.init()
    return link


# ═══════════════════════════════════════════════════════════════════════════════
# PYTEST HOOKS
# ═══════════════════════════════════════════════════════════════════════════════


def pytest_addoption(parser):
    """Add --hardware and --updi-port options."""
    parser.addoption(
        "--hardware", action="store_true", default=False,
        help="Run tests that need a real UPDI target",
    )
    parser.addoption(
        "--updi-port", action="store", default=None,
        help="Serial port of the SerialUPDI adapter for hardware tests",
    )


def pytest_configure(config):
    """
    Configure pytest markers for UPDI tests.

    Registers custom markers:
        hardware: Test needs a real target on a SerialUPDI adapter
    """
    config.addinivalue_line(
        "markers", "hardware: Test needs a real UPDI target (run with --hardware)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --hardware was given."""
    if config.getoption("--hardware"):
        return

    skip_marker = pytest.mark.skip(reason="needs --hardware and a real UPDI target")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_marker)
