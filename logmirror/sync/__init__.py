"""
Sync engine for logmirror.

MirroredLog owns one in-memory mirror of one log table. It is mutated
only by its initial load and by catch-up polls, and it satisfies the
Pollable protocol so a ChangeNotifier can drive it.
"""

from .mirror import MirroredLog

__all__ = ["MirroredLog"]
