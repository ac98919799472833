"""
Candidate grid generator.

Grids of every admissible size are streamed lazily from the pool, each
carrying its price and the m-subsets it covers. This is the dominant cost
of a run (C(20, 10) = 184,756 grids), so the candidate space is bounded by
explicit ceilings. For the solver the stream is packed once into a
CandidateIndex: per grid size, a numpy matrix of the universe columns each
grid covers, scored against the uncovered mask with one vectorized pass.
"""
import itertools
from dataclasses import dataclass

import numpy as np

from loto_cover.config import (
    MAX_CANDIDATES, MAX_SIMPLE_CANDIDATES, MAX_GRID_SIZE,
    CANCEL_CHECK_INTERVAL, CANDIDATE_BATCH_SIZE, logger
)
from loto_cover.core.combinatorics import (
    binomial, chunked, k_combinations, subset_key
)
from loto_cover.core.errors import (
    CandidateSpaceTooLarge, InvalidInput, check_cancelled
)
from loto_cover.core.records import CandidateGrid


def covered_subset_keys(numbers, match_threshold):
    """Keys of all m-subsets contained in a grid"""
    return frozenset(
        subset_key(combo)
        for combo in itertools.combinations(numbers, match_threshold)
    )


def admissible_sizes(pool_size, price_table, draw_size):
    """Grid sizes that can be played from this pool"""
    too_small = [s for s in price_table.sizes if s < draw_size]
    if too_small:
        raise InvalidInput(
            f"Grid sizes {too_small} are smaller than the draw size {draw_size}"
        )
    largest = min(pool_size, MAX_GRID_SIZE)
    return tuple(s for s in price_table.sizes if s <= largest)


def candidate_counts(pool_size, price_table, draw_size, max_simple_candidates=None):
    """Number of candidates that will be scanned, per grid size"""
    counts = {}
    for size in admissible_sizes(pool_size, price_table, draw_size):
        n = binomial(pool_size, size)
        if size == draw_size and max_simple_candidates is not None:
            n = min(n, max_simple_candidates)
        counts[size] = n
    return counts


def candidate_space_size(pool_size, price_table, draw_size, max_simple_candidates=None):
    return sum(candidate_counts(
        pool_size, price_table, draw_size, max_simple_candidates
    ).values())


class UniverseColumns:
    """
    Maps subset keys to their column in the coverage universe.

    Keys outside the universe map to the extra column `size`, which is never
    uncovered.
    """

    def __init__(self, universe):
        keys = np.array([subset_key(s) for s in universe.subsets], dtype=np.int64)
        self._order = np.argsort(keys)
        self._sorted = keys[self._order]
        self.size = len(keys)
        self.dtype = np.int16 if self.size < np.iinfo(np.int16).max else np.int32

    def columns(self, keys):
        keys = np.asarray(keys, dtype=np.int64)
        pos = np.minimum(np.searchsorted(self._sorted, keys), self.size - 1)
        found = self._sorted[pos] == keys
        return np.where(found, self._order[pos], self.size).astype(self.dtype)


def _subset_masks(numbers, patterns):
    """Bitmask key of every m-subset of each row of `numbers`"""
    bits = np.left_shift(np.int64(1), numbers.astype(np.int64))
    return np.bitwise_or.reduce(bits[:, patterns], axis=2)


@dataclass(frozen=True, eq=False)
class CandidateBlock:
    """Candidates sharing one size and price, in canonical order"""
    size: int
    cost: float
    numbers: np.ndarray
    columns: np.ndarray

    def __len__(self):
        return len(self.numbers)

    def gains(self, uncovered):
        """Newly covered subsets per candidate"""
        parts = [
            np.count_nonzero(uncovered[self.columns[start:start + CANDIDATE_BATCH_SIZE]], axis=1)
            for start in range(0, len(self.columns), CANDIDATE_BATCH_SIZE)
        ]
        return np.concatenate(parts)

    def grid(self, row, match_threshold):
        numbers = tuple(int(n) for n in self.numbers[row])
        return CandidateGrid(numbers=numbers, cost=self.cost,
                             covered_keys=covered_subset_keys(numbers, match_threshold))


class CandidateIndex:
    """
    Candidate blocks with their covered universe columns, built once per run.

    `best` applies the greedy rule: most newly covered subsets, then lowest
    cost per newly covered subset, then first in canonical order.
    """

    def __init__(self, blocks, universe_size, match_threshold):
        self.blocks = [b for b in blocks if len(b)]
        self.universe_size = universe_size
        self.match_threshold = match_threshold

    def __len__(self):
        return sum(len(b) for b in self.blocks)

    def uncovered_mask(self):
        mask = np.ones(self.universe_size + 1, dtype=bool)
        mask[self.universe_size] = False
        return mask

    def best(self, uncovered, executor=None):
        """
        (block, row, newly covered count) of the greedy choice, or None when
        no candidate covers anything still uncovered.
        """
        if executor is not None:
            all_gains = list(executor.map(lambda b: b.gains(uncovered), self.blocks))
        else:
            all_gains = [b.gains(uncovered) for b in self.blocks]

        best = None
        best_new = 0
        best_ratio = float('inf')
        for block, gains in zip(self.blocks, all_gains):
            row = int(np.argmax(gains))
            n_new = int(gains[row])
            if n_new == 0:
                continue
            ratio = block.cost / n_new
            if n_new > best_new or (n_new == best_new and ratio < best_ratio):
                best = (block, row, n_new)
                best_new = n_new
                best_ratio = ratio
        return best

    @classmethod
    def from_grids(cls, grids, universe):
        """Index an arbitrary CandidateGrid sequence, keeping its order"""
        lookup = UniverseColumns(universe)
        groups = []
        for grid in grids:
            if not grid.covered_keys:
                continue
            if groups and (groups[-1][0].size, groups[-1][0].cost) == (grid.size, grid.cost):
                groups[-1].append(grid)
            else:
                groups.append([grid])

        blocks = []
        for group in groups:
            keys = [sorted(g.covered_keys) for g in group]
            blocks.append(CandidateBlock(
                size=group[0].size,
                cost=group[0].cost,
                numbers=np.array([g.numbers for g in group], dtype=np.int8),
                columns=lookup.columns(keys),
            ))
        return cls(blocks, lookup.size, universe.match_threshold)


def _spread_indices(total, wanted):
    """`wanted` evenly spaced positions in range(total), ascending"""
    step = total / wanted
    return [int(i * step) for i in range(wanted)]


class CandidateGenerator:
    """
    Restartable stream of CandidateGrid objects.

    Order is canonical: grid size ascending, then lexicographic within a
    size, so two traversals always produce the same sequence. When the
    number of simple (draw-size) grids is capped, the kept grids are spread
    evenly over the full enumeration rather than taken from its start.
    """

    def __init__(self, pool, target, price_table,
                 max_simple_candidates=MAX_SIMPLE_CANDIDATES,
                 max_candidates=MAX_CANDIDATES, cancel_event=None):
        if max_simple_candidates is not None and max_simple_candidates < 1:
            raise InvalidInput(
                f"max_simple_candidates must be positive, got {max_simple_candidates}"
            )

        self.pool = pool
        self.target = target
        self.price_table = price_table
        self.max_simple_candidates = max_simple_candidates
        self.cancel_event = cancel_event

        self.counts = candidate_counts(
            len(pool.numbers), price_table, target.draw_size,
            max_simple_candidates
        )
        self.total = sum(self.counts.values())

        if max_candidates is not None and self.total > max_candidates:
            raise CandidateSpaceTooLarge(
                self.total, max_candidates,
                hint="Reduce the pool size, drop large grid sizes "
                     "or cap the simple candidates scanned"
            )

        if not self.counts:
            raise InvalidInput(
                f"No admissible grid size for a pool of {len(pool.numbers)} "
                f"numbers (sizes: {list(price_table.sizes)})"
            )

    @property
    def sizes(self):
        return tuple(self.counts)

    def __len__(self):
        return self.total

    def log_summary(self):
        logger.info(f"Candidates: {self.total:,} grids")
        for size, n in self.counts.items():
            full = binomial(len(self.pool.numbers), size)
            capped = f" (capped from {full:,})" if n < full else ""
            logger.info(f"   - Size {size}: {n:,} grids{capped} "
                        f"at {self.price_table.cost(size):.2f} each")

    def _combinations_of_size(self, size):
        combos = k_combinations(self.pool.numbers, size)
        wanted = self.counts[size]
        if wanted >= len(combos):
            yield from combos
            return

        targets = iter(_spread_indices(len(combos), wanted))
        next_index = next(targets)
        for index, combo in enumerate(combos):
            if index == next_index:
                yield combo
                next_index = next(targets, None)
                if next_index is None:
                    return

    def iter_size(self, size):
        """Candidates of a single size, in canonical order"""
        m = self.target.match_threshold
        cost = self.price_table.cost(size)
        for scanned, numbers in enumerate(self._combinations_of_size(size)):
            if scanned % CANCEL_CHECK_INTERVAL == 0:
                check_cancelled(self.cancel_event, "candidate generation")
            keys = covered_subset_keys(numbers, m)
            if not keys:
                continue
            yield CandidateGrid(numbers=numbers, cost=cost, covered_keys=keys)

    def __iter__(self):
        for size in self.sizes:
            yield from self.iter_size(size)

    def build_index(self, universe):
        """
        Pack every candidate into a CandidateIndex against `universe`.

        Covered subsets are computed once here, in numpy batches of
        CANDIDATE_BATCH_SIZE grids, instead of on every greedy iteration.
        """
        lookup = UniverseColumns(universe)
        m = self.target.match_threshold
        blocks = []
        for size in self.sizes:
            patterns = np.array(list(itertools.combinations(range(size), m)), dtype=np.intp)
            numbers_parts = []
            column_parts = []
            for batch in chunked(self._combinations_of_size(size), CANDIDATE_BATCH_SIZE):
                check_cancelled(self.cancel_event, "candidate indexing")
                numbers = np.array(batch, dtype=np.int8)
                numbers_parts.append(numbers)
                column_parts.append(lookup.columns(_subset_masks(numbers, patterns)))
            blocks.append(CandidateBlock(
                size=size,
                cost=self.price_table.cost(size),
                numbers=np.concatenate(numbers_parts),
                columns=np.concatenate(column_parts),
            ))
            logger.debug(f"Indexed {len(blocks[-1]):,} grids of size {size}")
        return CandidateIndex(blocks, lookup.size, m)


def generate_candidates(pool, target, price_table, **kwargs):
    """Convenience wrapper returning a CandidateGenerator"""
    return CandidateGenerator(pool, target, price_table, **kwargs)
