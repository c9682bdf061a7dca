"""Rigid and similarity transforms."""

from .pose import SE3, Sim3

__all__ = ["SE3", "Sim3"]
