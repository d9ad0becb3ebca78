"""Periodic feed scheduling."""

from .scheduler import Scheduler, TickStats

__all__ = ["Scheduler", "TickStats"]
