"""Random index sampling for RANSAC."""

from __future__ import annotations

import numpy as np


def create_random_array(
    size: int,
    rand_min: int,
    rand_max: int,
    rng: np.random.Generator | None = None,
) -> list[int]:
    """Draw distinct integers uniformly from an inclusive range.

    numpy Generators are not safe to share between threads, so every
    caller that may run concurrently should pass its own ``rng``.

    Args:
        size: Number of integers to draw
        rand_min: Smallest admissible value
        rand_max: Largest admissible value (inclusive)
        rng: Random generator to draw from (a fresh one if None)

    Returns:
        List of ``size`` distinct integers in ``[rand_min, rand_max]``

    Raises:
        ValueError: If the range holds fewer than ``size`` values
    """
    if rand_max < rand_min:
        raise ValueError(f"Empty range [{rand_min}, {rand_max}]")
    num_candidates = rand_max - rand_min + 1
    if size > num_candidates:
        raise ValueError(
            f"Cannot draw {size} distinct values from [{rand_min}, {rand_max}]"
        )

    if rng is None:
        rng = np.random.default_rng()

    draws = rng.choice(num_candidates, size=size, replace=False)
    return [int(d) + rand_min for d in draws]
