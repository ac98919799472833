"""
Weighted set cover over mixed-size grids.

Greedy approximation: repeatedly take the grid covering the most
still-uncovered subsets (ties go to the lowest cost per newly covered
subset, then to canonical order). This is the classical
(1 + ln |U|)-approximation, not an optimum; callers grade the result
against the certified bounds. Two reference strategies are priced
alongside it and the cheapest complete option is recommended.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from loto_cover.config import (
    MAX_GRIDS, MAX_SIMPLE_CANDIDATES, MAX_CANDIDATES, MAX_UNIVERSE_SIZE,
    MAX_GRID_SIZE, logger
)
from loto_cover.core.candidates import (
    CandidateGenerator, CandidateIndex, covered_subset_keys
)
from loto_cover.core.combinatorics import binomial, k_combinations
from loto_cover.core.errors import InvalidInput, check_cancelled
from loto_cover.core.records import (
    CandidateGrid, GridPriceTable, Solution, StrategyCost,
    STRATEGY_GREEDY, STRATEGY_PURE_SMALL, STRATEGY_PURE_LARGE,
    STATUS_COVERED, STATUS_ABORTED
)
from loto_cover.core.universe import build_coverage_universe

ABORT_GRID_CAP = 'grid cap reached'
ABORT_BUDGET = 'budget exceeded'
ABORT_NO_PROGRESS = 'no candidate covers the remaining subsets'

# Preference when two strategies cost the same
_STRATEGY_PREFERENCE = (STRATEGY_GREEDY, STRATEGY_PURE_LARGE, STRATEGY_PURE_SMALL)


@dataclass(frozen=True)
class SolverSettings:
    """Tuning and safety ceilings for one optimization run"""
    price_table: GridPriceTable = field(default_factory=GridPriceTable.from_mapping)
    max_grids: Optional[int] = MAX_GRIDS
    max_simple_candidates: Optional[int] = MAX_SIMPLE_CANDIDATES
    max_candidates: Optional[int] = MAX_CANDIDATES
    max_universe_size: Optional[int] = MAX_UNIVERSE_SIZE
    max_budget: Optional[float] = None
    n_workers: int = 1

    def __post_init__(self):
        if self.max_grids is not None and self.max_grids < 1:
            raise InvalidInput(f"max_grids must be positive, got {self.max_grids}")
        if self.max_budget is not None and self.max_budget <= 0:
            raise InvalidInput(f"max_budget must be positive, got {self.max_budget}")
        if self.n_workers < 1:
            raise InvalidInput(f"n_workers must be positive, got {self.n_workers}")


def greedy_step(remaining, candidates):
    """
    One greedy iteration over a sequence of CandidateGrid.

    Set-based form of the rule CandidateIndex.best applies to the packed
    candidates inside solve_greedy.

    Returns (best_candidate, newly_covered_keys), or (None, empty) when no
    candidate covers anything in `remaining`. Does not modify `remaining`.
    """
    best = None
    best_new = frozenset()
    best_ratio = float('inf')

    for candidate in candidates:
        newly = candidate.covered_keys & remaining
        n_new = len(newly)
        if n_new == 0:
            continue
        ratio = candidate.cost / n_new
        if n_new > len(best_new) or (n_new == len(best_new) and ratio < best_ratio):
            best = candidate
            best_new = newly
            best_ratio = ratio

    return best, best_new


def _index_for(candidates, universe):
    if isinstance(candidates, CandidateIndex):
        return candidates
    if isinstance(candidates, CandidateGenerator):
        return candidates.build_index(universe)
    return CandidateIndex.from_grids(candidates, universe)


def solve_greedy(universe, candidates, max_grids=MAX_GRIDS, max_budget=None,
                 cancel_event=None, n_workers=1):
    """
    Greedy cover of `universe` by `candidates`.

    `candidates` is a CandidateGenerator, a prebuilt CandidateIndex or any
    sequence of CandidateGrid. Each iteration scores every candidate against
    the uncovered mask in one numpy pass per grid size, fanned out over
    `n_workers` threads; the pick is the one greedy_step would make.

    Terminates COVERED when every subset is covered, or ABORTED on the grid
    cap, the budget cap, or when no candidate makes progress. An aborted
    Solution reports its partial coverage and is never complete.
    """
    index = _index_for(candidates, universe)
    uncovered = index.uncovered_mask()
    remaining = index.universe_size
    selected = []
    total_cost = 0.0
    abort_reason = None

    logger.debug(f"Greedy start: {remaining:,} subsets to cover, "
                 f"{len(index):,} candidates")

    executor = ThreadPoolExecutor(max_workers=n_workers) if n_workers and n_workers > 1 else None
    try:
        while remaining:
            check_cancelled(cancel_event, "greedy set cover")

            if max_grids is not None and len(selected) >= max_grids:
                abort_reason = ABORT_GRID_CAP
                break

            choice = index.best(uncovered, executor)

            if choice is None:
                abort_reason = ABORT_NO_PROGRESS
                break

            block, row, n_new = choice
            if max_budget is not None and total_cost + block.cost > max_budget + 1e-9:
                abort_reason = ABORT_BUDGET
                break

            best = block.grid(row, index.match_threshold)
            selected.append(best)
            total_cost += best.cost
            uncovered[block.columns[row]] = False
            remaining -= n_new

            logger.debug(
                f"Grid {len(selected)}: {list(best.numbers)} (size {best.size}, "
                f"{best.cost:.2f}) | Covered {n_new} new subsets | "
                f"Remaining: {remaining}"
            )
    finally:
        if executor is not None:
            executor.shutdown()

    status = STATUS_COVERED if not remaining else STATUS_ABORTED
    solution = Solution(
        grids=tuple(selected),
        total_cost=round(total_cost, 2),
        strategy=STRATEGY_GREEDY,
        status=status,
        universe_size=index.universe_size,
        covered_count=index.universe_size - remaining,
        abort_reason=abort_reason,
    )

    if solution.is_complete:
        logger.info(f"Greedy cover complete: {solution.grid_count} grids, "
                    f"{solution.total_cost:.2f} total")
    else:
        logger.warning(f"Greedy cover ABORTED ({abort_reason}): "
                       f"{solution.uncovered_count:,} of {solution.universe_size:,} "
                       f"subsets uncovered after {solution.grid_count} grids")
    return solution


def pure_small_baseline(pool, target, price_table):
    """Every D-subset of the pool as a simple grid"""
    size = target.draw_size
    if not price_table.has_size(size):
        return StrategyCost(STRATEGY_PURE_SMALL, 0, float('inf'), available=False)
    count = binomial(len(pool.numbers), size)
    return StrategyCost(
        STRATEGY_PURE_SMALL, count, round(count * price_table.cost(size), 2)
    )


def pure_large_baseline(pool, price_table):
    """The whole pool as one multiple grid, when that size is playable"""
    n = len(pool.numbers)
    if n > MAX_GRID_SIZE or not price_table.has_size(n):
        return StrategyCost(STRATEGY_PURE_LARGE, 0, float('inf'), available=False)
    return StrategyCost(STRATEGY_PURE_LARGE, 1, price_table.cost(n))


def _pure_small_solution(pool, target, price_table, universe):
    cost = price_table.cost(target.draw_size)
    m = target.match_threshold
    grids = tuple(
        CandidateGrid(numbers=combo, cost=cost,
                      covered_keys=covered_subset_keys(combo, m))
        for combo in k_combinations(pool.numbers, target.draw_size)
    )
    return Solution(
        grids=grids,
        total_cost=round(len(grids) * cost, 2),
        strategy=STRATEGY_PURE_SMALL,
        status=STATUS_COVERED,
        universe_size=universe.size,
        covered_count=universe.size,
    )


def _pure_large_solution(pool, target, price_table, universe):
    numbers = pool.numbers
    grid = CandidateGrid(
        numbers=numbers,
        cost=price_table.cost(len(numbers)),
        covered_keys=covered_subset_keys(numbers, target.match_threshold),
    )
    return Solution(
        grids=(grid,),
        total_cost=grid.cost,
        strategy=STRATEGY_PURE_LARGE,
        status=STATUS_COVERED,
        universe_size=universe.size,
        covered_count=universe.size,
    )


def _eligible(option, max_budget):
    if not option.available or not option.complete:
        return False
    return max_budget is None or option.cost <= max_budget + 1e-9


def optimize_grids(pool, target, settings=None, cancel_event=None):
    """
    Recommend the cheapest complete grid set for the guarantee.

    Runs the greedy solver, prices both reference strategies and returns the
    winner tagged with its strategy label. If no complete option fits, the
    aborted greedy solution is returned as is.
    """
    if settings is None:
        settings = SolverSettings()

    logger.info(f"Mixed set cover for {len(pool.numbers)} numbers, "
                f"guarantee {target.label}")

    universe = build_coverage_universe(pool, target, settings.max_universe_size)
    generator = CandidateGenerator(
        pool, target, settings.price_table,
        max_simple_candidates=settings.max_simple_candidates,
        max_candidates=settings.max_candidates,
        cancel_event=cancel_event,
    )
    generator.log_summary()

    greedy = solve_greedy(
        universe, generator,
        max_grids=settings.max_grids,
        max_budget=settings.max_budget,
        cancel_event=cancel_event,
        n_workers=settings.n_workers,
    )

    options = [
        StrategyCost(STRATEGY_GREEDY, greedy.grid_count, greedy.total_cost,
                     available=True, complete=greedy.is_complete),
        pure_large_baseline(pool, settings.price_table),
        pure_small_baseline(pool, target, settings.price_table),
    ]

    eligible = [o for o in options if _eligible(o, settings.max_budget)]
    if not eligible:
        logger.warning("No complete strategy within limits - returning partial greedy cover")
        return greedy.with_comparison(options)

    best = min(eligible, key=lambda o: (o.cost, _STRATEGY_PREFERENCE.index(o.strategy)))

    if best.strategy == STRATEGY_GREEDY:
        chosen = greedy
    elif best.strategy == STRATEGY_PURE_LARGE:
        chosen = _pure_large_solution(pool, target, settings.price_table, universe)
    else:
        chosen = _pure_small_solution(pool, target, settings.price_table, universe)

    for option in options:
        if option.available:
            logger.info(f"   - {option.strategy}: {option.grid_count} grids, "
                        f"{option.cost:.2f}{'' if option.complete else ' (incomplete)'}")
    logger.info(f"Best strategy: {chosen.strategy} "
                f"({chosen.grid_count} grids, {chosen.total_cost:.2f})")

    return chosen.with_comparison(options)
