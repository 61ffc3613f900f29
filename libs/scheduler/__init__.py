"""Background link scanning."""

from .parallel_scheduler import LinkProcessor, ParallelScheduler

__all__ = ["ParallelScheduler", "LinkProcessor"]
