"""Small shared utilities."""

from .random_array import create_random_array

__all__ = ["create_random_array"]
