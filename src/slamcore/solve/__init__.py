"""Geometric solvers."""

from .sim3_solver import CHI_SQ_2D, Sim3Result, Sim3Solver, compute_sim3

__all__ = ["Sim3Solver", "Sim3Result", "compute_sim3", "CHI_SQ_2D"]
