"""
Coverage universe: every m-subset of the pool that some grid must contain.
"""
from dataclasses import dataclass, field
from typing import Tuple

from loto_cover.config import MAX_UNIVERSE_SIZE, logger
from loto_cover.core.combinatorics import binomial, k_combinations, subset_key
from loto_cover.core.errors import UniverseTooLarge


@dataclass(frozen=True)
class CoverageUniverse:
    """C(N, m) subsets in ascending lexicographic order with their keys"""
    subsets: Tuple[Tuple[int, ...], ...]
    keys: frozenset = field(repr=False)
    match_threshold: int

    @property
    def size(self):
        return len(self.subsets)

    def __len__(self):
        return len(self.subsets)

    def __contains__(self, subset):
        return subset_key(subset) in self.keys


def universe_size(pool_size, match_threshold):
    return binomial(pool_size, match_threshold)


def build_coverage_universe(pool, target, max_universe_size=MAX_UNIVERSE_SIZE):
    """
    Enumerate all m-subsets of the pool.

    Raises UniverseTooLarge before enumerating anything when C(N, m) exceeds
    the ceiling.
    """
    m = target.match_threshold
    size = universe_size(len(pool.numbers), m)

    if max_universe_size is not None and size > max_universe_size:
        raise UniverseTooLarge(
            size, max_universe_size,
            hint="Reduce the pool size or raise the universe ceiling"
        )

    subsets = tuple(k_combinations(pool.numbers, m))
    keys = frozenset(subset_key(s) for s in subsets)

    logger.info(f"Coverage universe: {len(pool.numbers)} numbers, "
                f"guarantee {target.label}, {size:,} subsets to cover")

    return CoverageUniverse(subsets=subsets, keys=keys, match_threshold=m)
