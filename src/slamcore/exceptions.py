"""Error types raised by slamcore.

Expected failures (too few correspondences, a keyframe that is not
connected, ...) are reported through return values. The exceptions here
are reserved for caller bugs and malformed input files.
"""


class SlamCoreError(Exception):
    """Base class for all slamcore errors."""


class ContractViolationError(SlamCoreError, RuntimeError):
    """A precondition of a graph operation was violated by the caller.

    Examples are assigning a spanning parent twice or recovering the
    spanning connections of a node that has no parent.
    """


class ConfigError(SlamCoreError, ValueError):
    """A configuration file could not be interpreted."""
