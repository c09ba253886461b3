"""Rolling request scheduling.

Components:
- RollingScheduler: Bounded-concurrency run loop over a transport session
- ProgressTracker: Observable progress reporting hooked into the callbacks
"""

from .progress import ProgressCallback, ProgressTracker, ProgressUpdate
from .scheduler import CompletionCallback, IdleCallback, RollingScheduler, TransportFactory

__all__ = [
    # Scheduling
    "CompletionCallback",
    "IdleCallback",
    "RollingScheduler",
    "TransportFactory",
    # Progress tracking
    "ProgressCallback",
    "ProgressTracker",
    "ProgressUpdate",
]
