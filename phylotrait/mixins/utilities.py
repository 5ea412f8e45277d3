from typing import Any, List, Optional, Union

import numpy as np
import pandas as pd


def is_missing(value: Any) -> bool:
    """Determine whether a single trait value is missing.

    Args:
        value: A continuous or discrete trait value.

    Returns
    -------
        True if the value is None or NaN, False otherwise.
    """
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def spawn_generators(
    random_seed: Optional[Union[int, np.random.SeedSequence]], n: int
) -> List[np.random.Generator]:
    """Creates independent random generators from a single seed.

    Each generator is seeded from a child of the same SeedSequence, so that
    draws made with different generators are statistically independent and
    reproducible from `random_seed` alone.

    Args:
        random_seed: Integer seed, SeedSequence, or None for fresh entropy.
        n: Number of generators to create.

    Returns
    -------
        A list of `n` numpy Generators.
    """
    if isinstance(random_seed, np.random.SeedSequence):
        seed_sequence = random_seed
    else:
        seed_sequence = np.random.SeedSequence(random_seed)
    return [np.random.default_rng(s) for s in seed_sequence.spawn(n)]
