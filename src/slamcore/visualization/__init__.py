"""Visualization of the map."""

from .rerun_visualizer import RerunVisualizer

__all__ = ["RerunVisualizer"]
