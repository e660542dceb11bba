"""
Job workers.

Invariants:
    - Errors are converted to job outcomes here and nowhere else
    - A failing job never stops the worker loop
"""

from .dispatcher import JobDispatcher, JobOutcome

__all__ = ["JobDispatcher", "JobOutcome"]
