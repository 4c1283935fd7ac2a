"""
Near-real-time delivery of article lists.

This package holds the update coordinator that walks the
live subscription -> polling -> offline ladder.
"""

from .coordinator import ChangeSignal, CoordinatorState, Subscription, UpdateCoordinator

__all__ = [
    "UpdateCoordinator",
    "CoordinatorState",
    "ChangeSignal",
    "Subscription",
]
