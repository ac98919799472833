"""
Typed records exchanged between the engine and its callers.

Inputs are parsed and validated here, at the boundary; nothing untyped
flows through the core. Every record is frozen once built and exposes
`to_dict()` for the API layer.
"""
from collections import Counter
from dataclasses import dataclass, field
from numbers import Integral
from typing import Optional, Tuple

import pandas as pd

from loto_cover.config import (
    MIN_NUMBER, MAX_NUMBER, CHANCE_MIN, CHANCE_MAX, MAX_GRID_SIZE,
    DEFAULT_GRID_COSTS, DEFAULT_MATCH_THRESHOLD, DEFAULT_DRAW_SIZE,
    MAX_POOL_SIZE
)
from loto_cover.core.errors import InvalidInput, SolverAborted

STRATEGY_GREEDY = 'greedy-mixed'
STRATEGY_PURE_SMALL = 'pure-small'
STRATEGY_PURE_LARGE = 'pure-large'

STATUS_COVERED = 'covered'
STATUS_ABORTED = 'aborted'

MODE_EXHAUSTIVE = 'exhaustive'
MODE_SAMPLED = 'sampled'


def _as_int(value, what):
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise InvalidInput(f"{what} must be an integer, got {value!r}")
    return int(value)


def _parse_numbers(numbers, what, low, high):
    if numbers is None:
        raise InvalidInput(f"{what} is required")
    try:
        values = [_as_int(n, f"{what} entry") for n in numbers]
    except TypeError:
        raise InvalidInput(f"{what} must be a sequence of integers") from None

    out_of_range = [n for n in values if not low <= n <= high]
    if out_of_range:
        raise InvalidInput(
            f"{what} numbers out of range [{low}, {high}]: {out_of_range}"
        )

    duplicates = sorted(n for n, c in Counter(values).items() if c > 1)
    if duplicates:
        raise InvalidInput(f"{what} has duplicate numbers: {duplicates}")

    return values


def parse_grid(numbers):
    """Validate one played grid; returns its numbers as a sorted tuple"""
    values = _parse_numbers(numbers, "Grid", MIN_NUMBER, MAX_NUMBER)
    if not 1 <= len(values) <= MAX_GRID_SIZE:
        raise InvalidInput(
            f"Grid must hold between 1 and {MAX_GRID_SIZE} numbers, got {len(values)}"
        )
    return tuple(sorted(values))


# ============================================
# INPUTS
# ============================================
@dataclass(frozen=True)
class GuaranteeTarget:
    """'At least match_threshold of draw_size' guarantee"""
    match_threshold: int = DEFAULT_MATCH_THRESHOLD
    draw_size: int = DEFAULT_DRAW_SIZE

    def __post_init__(self):
        m = _as_int(self.match_threshold, "match_threshold")
        d = _as_int(self.draw_size, "draw_size")
        if not 1 <= d <= MAX_NUMBER - MIN_NUMBER + 1:
            raise InvalidInput(f"draw_size must be in [1, {MAX_NUMBER}], got {d}")
        if m < 1:
            raise InvalidInput(f"match_threshold must be >= 1, got {m}")
        if m >= d:
            raise InvalidInput(
                f"match_threshold ({m}) must be smaller than draw_size ({d})"
            )

    @property
    def label(self):
        return f">={self.match_threshold} of {self.draw_size}"

    def to_dict(self):
        return {
            'match_threshold': self.match_threshold,
            'draw_size': self.draw_size,
            'label': self.label,
        }


@dataclass(frozen=True)
class Pool:
    """Selected numbers, sorted ascending, immutable for a run"""
    numbers: Tuple[int, ...]

    @classmethod
    def from_numbers(cls, numbers, draw_size=DEFAULT_DRAW_SIZE,
                     max_size=MAX_POOL_SIZE):
        values = _parse_numbers(numbers, "Pool", MIN_NUMBER, MAX_NUMBER)
        if len(values) < draw_size:
            raise InvalidInput(
                f"Pool needs at least {draw_size} numbers (draw size), "
                f"got {len(values)}"
            )
        if max_size is not None and len(values) > max_size:
            raise InvalidInput(
                f"Pool has {len(values)} numbers, maximum is {max_size}"
            )
        return cls(tuple(sorted(values)))

    @property
    def size(self):
        return len(self.numbers)

    def __len__(self):
        return len(self.numbers)

    def __iter__(self):
        return iter(self.numbers)

    def __contains__(self, number):
        return number in self.numbers

    def to_dict(self):
        return {'numbers': list(self.numbers), 'size': self.size}


@dataclass(frozen=True)
class Draw:
    """Winning numbers plus the optional chance number"""
    numbers: Tuple[int, ...]
    complementary: Optional[int] = None

    @classmethod
    def from_numbers(cls, numbers, complementary=None,
                     draw_size=DEFAULT_DRAW_SIZE):
        values = _parse_numbers(numbers, "Draw", MIN_NUMBER, MAX_NUMBER)
        if len(values) != draw_size:
            raise InvalidInput(
                f"Draw must contain exactly {draw_size} numbers, got {len(values)}"
            )
        if complementary is not None:
            complementary = _as_int(complementary, "complementary")
            if not CHANCE_MIN <= complementary <= CHANCE_MAX:
                raise InvalidInput(
                    f"Chance number must be in [{CHANCE_MIN}, {CHANCE_MAX}], "
                    f"got {complementary}"
                )
        return cls(tuple(sorted(values)), complementary)

    def to_dict(self):
        return {'numbers': list(self.numbers), 'complementary': self.complementary}


@dataclass(frozen=True)
class GridPriceTable:
    """
    Immutable price per grid size.

    Passed explicitly to the generator and the solver so alternative
    pricing can be plugged in without touching module state.
    """
    costs: Tuple[Tuple[int, float], ...]

    @classmethod
    def from_mapping(cls, mapping=None):
        if mapping is None:
            mapping = DEFAULT_GRID_COSTS
        if not mapping:
            raise InvalidInput("Price table must contain at least one grid size")

        pairs = []
        for size, price in mapping.items():
            size = _as_int(size, "grid size")
            if not 1 <= size <= MAX_GRID_SIZE:
                raise InvalidInput(
                    f"Grid size must be in [1, {MAX_GRID_SIZE}], got {size}"
                )
            try:
                price = float(price)
            except (TypeError, ValueError):
                raise InvalidInput(f"Price for size {size} is not a number: {price!r}") from None
            if not price > 0:
                raise InvalidInput(f"Price for size {size} must be positive, got {price}")
            pairs.append((size, price))
        return cls(tuple(sorted(pairs)))

    @classmethod
    def restricted(cls, sizes, mapping=None):
        """Default (or given) prices limited to the given sizes"""
        base = dict(DEFAULT_GRID_COSTS if mapping is None else mapping)
        missing = [s for s in sizes if s not in base]
        if missing:
            raise InvalidInput(f"No price known for grid sizes {missing}")
        return cls.from_mapping({s: base[s] for s in sizes})

    @property
    def sizes(self):
        return tuple(size for size, _ in self.costs)

    @property
    def max_size(self):
        return self.costs[-1][0]

    def has_size(self, size):
        return size in self.sizes

    def cost(self, size):
        for s, price in self.costs:
            if s == size:
                return price
        raise InvalidInput(f"Grid size {size} is not admissible (sizes: {list(self.sizes)})")

    def as_dict(self):
        return dict(self.costs)


# ============================================
# SOLVER OUTPUT
# ============================================
@dataclass(frozen=True)
class CandidateGrid:
    """A playable grid with its price and the subsets it covers"""
    numbers: Tuple[int, ...]
    cost: float
    covered_keys: frozenset = field(repr=False, compare=False)

    @property
    def size(self):
        return len(self.numbers)

    @property
    def covered_count(self):
        return len(self.covered_keys)

    @property
    def efficiency(self):
        """Cost per covered subset"""
        if not self.covered_keys:
            return float('inf')
        return self.cost / len(self.covered_keys)

    def to_dict(self):
        return {
            'numbers': list(self.numbers),
            'size': self.size,
            'cost': self.cost,
            'covered_subsets': self.covered_count,
            'efficiency': self.efficiency,
        }


@dataclass(frozen=True)
class StrategyCost:
    strategy: str
    grid_count: int
    cost: float
    available: bool = True
    complete: bool = True

    def to_dict(self):
        return {
            'strategy': self.strategy,
            'grids': self.grid_count,
            'cost': self.cost,
            'available': self.available,
            'complete': self.complete,
        }


@dataclass(frozen=True)
class Solution:
    """Ordered grid set produced by a strategy"""
    grids: Tuple[CandidateGrid, ...]
    total_cost: float
    strategy: str
    status: str
    universe_size: int
    covered_count: int
    abort_reason: Optional[str] = None
    comparison: Tuple[StrategyCost, ...] = ()

    @property
    def is_complete(self):
        return self.status == STATUS_COVERED

    @property
    def grid_count(self):
        return len(self.grids)

    @property
    def uncovered_count(self):
        return self.universe_size - self.covered_count

    @property
    def coverage_pct(self):
        if self.universe_size == 0:
            return 100.0
        return self.covered_count / self.universe_size * 100

    @property
    def number_tuples(self):
        return [g.numbers for g in self.grids]

    @property
    def size_breakdown(self):
        return dict(sorted(Counter(g.size for g in self.grids).items()))

    def with_comparison(self, comparison):
        return Solution(
            grids=self.grids, total_cost=self.total_cost,
            strategy=self.strategy, status=self.status,
            universe_size=self.universe_size, covered_count=self.covered_count,
            abort_reason=self.abort_reason, comparison=tuple(comparison)
        )

    def require_complete(self):
        """Return self, or raise SolverAborted for a partial cover"""
        if not self.is_complete:
            raise SolverAborted(self)
        return self

    def to_dict(self):
        return {
            'grids': [list(g.numbers) for g in self.grids],
            'grid_sizes': self.size_breakdown,
            'total_cost': self.total_cost,
            'strategy': self.strategy,
            'status': self.status,
            'coverage_complete': self.is_complete,
            'universe_size': self.universe_size,
            'covered_subsets': self.covered_count,
            'coverage_pct': self.coverage_pct,
            'abort_reason': self.abort_reason,
            'comparison': [c.to_dict() for c in self.comparison],
        }


# ============================================
# BOUNDS
# ============================================
CLASS_IMPOSSIBLE = 'IMPOSSIBLE'
CLASS_OPTIMAL = 'OPTIMAL'
CLASS_PLAUSIBLE = 'PLAUSIBLE'
CLASS_SUSPECT = 'SUSPECT'


@dataclass(frozen=True)
class BoundRecord:
    pool_size: int
    match_threshold: int
    draw_size: int
    lower_bound_simple: int
    schonheim_bound: int
    upper_bound: int

    @property
    def floor(self):
        """Certified minimum number of simple grids"""
        return max(self.lower_bound_simple, self.schonheim_bound)

    @property
    def optimal_range(self):
        return (self.floor, min(self.upper_bound, self.floor * 2))

    def to_dict(self):
        low, high = self.optimal_range
        return {
            'pool_size': self.pool_size,
            'match_threshold': self.match_threshold,
            'draw_size': self.draw_size,
            'lower_bound_simple': self.lower_bound_simple,
            'schonheim_bound': self.schonheim_bound,
            'upper_bound': self.upper_bound,
            'certified_floor': self.floor,
            'optimal_range': f"{low} - {high}",
        }


@dataclass(frozen=True)
class SolutionGrade:
    classification: str
    proposed: int
    floor: int
    analysis: str

    @property
    def is_valid(self):
        return self.classification != CLASS_IMPOSSIBLE

    def to_dict(self):
        return {
            'classification': self.classification,
            'proposed_grids': self.proposed,
            'certified_floor': self.floor,
            'is_valid': self.is_valid,
            'analysis': self.analysis,
        }


# ============================================
# VALIDATION
# ============================================
@dataclass(frozen=True)
class Counterexample:
    """
    A draw that broke the guarantee.

    `failed_subset` is the part of the draw no grid could match m times
    (the whole draw in plain best-match mode); the best_* fields describe
    the closest grid on that subset.
    """
    draw: Tuple[int, ...]
    complementary: Optional[int]
    failed_subset: Tuple[int, ...]
    best_grid_index: int
    best_matches: Tuple[int, ...]
    best_match_count: int

    def to_dict(self):
        return {
            'draw': list(self.draw),
            'complementary': self.complementary,
            'failed_subset': list(self.failed_subset),
            'best_grid_index': self.best_grid_index,
            'best_matches': list(self.best_matches),
            'best_match_count': self.best_match_count,
        }


@dataclass(frozen=True)
class GridStats:
    grid_index: int
    numbers: Tuple[int, ...]
    win_count: int
    win_rate: float
    rank_counts: Tuple[Tuple[int, int], ...] = ()

    @property
    def best_rank(self):
        """Best (lowest) rank reached, 0 if the grid never won"""
        return self.rank_counts[0][0] if self.rank_counts else 0

    def to_dict(self):
        return {
            'grid_index': self.grid_index,
            'numbers': list(self.numbers),
            'win_count': self.win_count,
            'win_rate': self.win_rate,
            'best_ranks': [{'rank': r, 'count': c} for r, c in self.rank_counts],
        }


@dataclass(frozen=True)
class ValidationReport:
    """
    Outcome of one validation run.

    `success_rate` is computed over the tested draws only; how much of the
    draw universe was tested is reported separately by `universe_coverage`.
    Only an exhaustive run that tested every draw without failure is a
    proven guarantee.
    """
    mode: str
    scope: str
    match_threshold: int
    hit_size: int
    grid_count: int
    total_draws: int
    tested_draws: int
    successes: int
    failures: int
    counterexamples: Tuple[Counterexample, ...]
    grid_stats: Tuple[GridStats, ...]
    elapsed_seconds: float = 0.0
    counterexamples_truncated: bool = False
    eligible_draws: Optional[int] = None
    eligible_successes: Optional[int] = None
    confidence_interval: Optional[Tuple[float, float]] = None
    seed: Optional[int] = None

    @property
    def success_rate(self):
        """Percentage of tested draws that met the guarantee"""
        if self.tested_draws == 0:
            return 0.0
        return self.successes / self.tested_draws * 100

    @property
    def universe_coverage(self):
        """Fraction of the draw universe actually tested"""
        if self.total_draws == 0:
            return 0.0
        return self.tested_draws / self.total_draws

    @property
    def eligible_success_rate(self):
        if not self.eligible_draws:
            return None
        return self.eligible_successes / self.eligible_draws * 100

    @property
    def is_guarantee_valid(self):
        """Only a strict exhaustive run with no failure proves the guarantee"""
        return (
            self.mode == MODE_EXHAUSTIVE
            and self.hit_size == self.match_threshold
            and self.total_draws > 0
            and self.tested_draws == self.total_draws
            and self.failures == 0
        )

    def grid_stats_frame(self):
        """Per-grid statistics as a pandas DataFrame"""
        return pd.DataFrame([
            {
                'grid': s.grid_index + 1,
                'numbers': ' '.join(f'{n:2d}' for n in s.numbers),
                'wins': s.win_count,
                'win_rate_pct': round(s.win_rate, 2),
                'best_rank': s.best_rank,
            }
            for s in self.grid_stats
        ])

    def to_dict(self):
        return {
            'mode': self.mode,
            'scope': self.scope,
            'match_threshold': self.match_threshold,
            'hit_size': self.hit_size,
            'grid_count': self.grid_count,
            'total_draws': self.total_draws,
            'tested_draws': self.tested_draws,
            'successes': self.successes,
            'failures': self.failures,
            'success_rate': self.success_rate,
            'universe_coverage': self.universe_coverage,
            'is_guarantee_valid': self.is_guarantee_valid,
            'counterexamples': [c.to_dict() for c in self.counterexamples],
            'counterexamples_truncated': self.counterexamples_truncated,
            'grid_stats': [s.to_dict() for s in self.grid_stats],
            'eligible_draws': self.eligible_draws,
            'eligible_successes': self.eligible_successes,
            'eligible_success_rate': self.eligible_success_rate,
            'confidence_interval': (list(self.confidence_interval)
                                    if self.confidence_interval else None),
            'seed': self.seed,
            'elapsed_seconds': self.elapsed_seconds,
        }
