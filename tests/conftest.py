"""
UPDI Link - Test Configuration
==============================

pytest configuration and fixtures shared by all tests under tests/.

It provides:
- Simulated target and link fixtures from updi_link.testkit
- The --hardware / --updi-port options and the hardware marker
"""

# Import and register link-layer fixtures
from updi_link.testkit.fixtures import (
    no_settle_delay,
    target,
    link,
    link24,
    ready_link,
    pytest_addoption,
    pytest_configure,
    pytest_collection_modifyitems,
)


# Re-export fixtures so pytest can discover them
__all__ = [
    "no_settle_delay",
    "target",
    "link",
    "link24",
    "ready_link",
]
