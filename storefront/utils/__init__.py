# Utilities Module
from .waiting import WaitOutcome, poll_until

__all__ = [
    "WaitOutcome",
    "poll_until",
]
