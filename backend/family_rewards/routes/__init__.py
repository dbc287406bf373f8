"""Aggregate import for all API route modules."""

from . import (
    auth,
    children,
    tasks,
    rewards,
    notifications,
    families,
    sync,
)

__all__ = [
    "auth",
    "children",
    "tasks",
    "rewards",
    "notifications",
    "families",
    "sync",
]
