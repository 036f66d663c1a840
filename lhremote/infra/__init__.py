"""
lhremote Infrastructure
=======================
Small shared helpers with no third-party dependencies.

- timing: Clock and Deadline used by every polling loop
- loopback: loopback address detection for connection guards
"""

from .loopback import is_loopback_address
from .timing import Clock, Deadline, SYSTEM_CLOCK

__all__ = [
    'Clock',
    'Deadline',
    'SYSTEM_CLOCK',
    'is_loopback_address',
]
