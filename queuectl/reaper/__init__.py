"""
Reaper module.
Contains the stale job reaper for recovering jobs left in processing.
"""

from queuectl.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
