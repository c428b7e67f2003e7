"""
Question sequencing.

Produces a fresh random presentation order for every attempt so learners
cannot memorize answer positions across retakes.
"""

from __future__ import annotations

import random
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")

# OS-backed source: no shared seed, so consecutive shuffles are independent
_system_random = random.SystemRandom()


def shuffle(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """
    Return a uniformly shuffled copy of ``items`` (Fisher-Yates).

    The input is never mutated.

    Args:
        items: Questions (or anything else) to reorder
        rng: Random source; defaults to the system generator

    Returns:
        New list containing a permutation of ``items``
    """
    rng = rng or _system_random
    shuffled = list(items)

    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]

    return shuffled
