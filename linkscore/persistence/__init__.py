"""
Persistence Layer

Run tracking (status state machine + result bundles) and the per-run
progress cache.
"""

from .runs import RunTracker, Run, RunStatus, TERMINAL_STATES
from .progress import ProgressCache, InMemoryProgressCache, RedisProgressCache

__all__ = [
    "RunTracker",
    "Run",
    "RunStatus",
    "TERMINAL_STATES",
    "ProgressCache",
    "InMemoryProgressCache",
    "RedisProgressCache",
]
