"""
Theoretical bounds on the number of grids needed for a coverage guarantee.

Lower bounds are certified: no complete cover of the m-subsets of an
N-number pool by D-number grids can use fewer grids. The upper bound is a
loose probabilistic estimate, used only to frame an "optimal range".
"""
from math import ceil, log

from loto_cover.config import logger
from loto_cover.core.combinatorics import binomial
from loto_cover.core.records import (
    BoundRecord, SolutionGrade,
    CLASS_IMPOSSIBLE, CLASS_OPTIMAL, CLASS_PLAUSIBLE, CLASS_SUSPECT
)


def _ceil_div(a, b):
    return -(-a // b)


def lower_bound_simple(n_pool, match_threshold, draw_size):
    """ceil(C(N, m) / C(D, m)): each grid holds at most C(D, m) subsets"""
    per_grid = binomial(draw_size, match_threshold)
    if per_grid == 0:
        return 0
    return _ceil_div(binomial(n_pool, match_threshold), per_grid)


def schonheim_bound(n_pool, match_threshold, draw_size):
    """
    Schönheim bound L(N, D, m).

    L = ceil(N/D * ceil((N-1)/(D-1) * ... ceil((N-m+1)/(D-m+1)) ...)),
    starting from L0 = 1 and applying one factor per level, innermost
    factor first. Integer arithmetic only.
    """
    if n_pool < match_threshold:
        return 0
    bound = 1
    for i in reversed(range(match_threshold)):
        bound = _ceil_div((n_pool - i) * bound, draw_size - i)
    return bound


def upper_bound(n_pool, match_threshold, draw_size):
    """ceil(C(N, m) / C(D, m) * (ln C(N, m) + 1))"""
    n_subsets = binomial(n_pool, match_threshold)
    per_grid = binomial(draw_size, match_threshold)
    if n_subsets == 0 or per_grid == 0:
        return 0
    return ceil(n_subsets / per_grid * (log(n_subsets) + 1))


def calculate_bounds(n_pool, match_threshold=3, draw_size=5):
    """All bounds for a pool of N numbers and an 'm of D' guarantee"""
    record = BoundRecord(
        pool_size=n_pool,
        match_threshold=match_threshold,
        draw_size=draw_size,
        lower_bound_simple=lower_bound_simple(n_pool, match_threshold, draw_size),
        schonheim_bound=schonheim_bound(n_pool, match_threshold, draw_size),
        upper_bound=upper_bound(n_pool, match_threshold, draw_size),
    )
    logger.debug(f"Bounds N={n_pool}, {match_threshold} of {draw_size}: "
                 f"LB1={record.lower_bound_simple}, "
                 f"Schonheim={record.schonheim_bound}, UB={record.upper_bound}")
    return record


def explain_bounds(record):
    """Human readable summary of a BoundRecord"""
    n_subsets = binomial(record.pool_size, record.match_threshold)
    per_grid = binomial(record.draw_size, record.match_threshold)
    low, high = record.optimal_range
    return (
        f"Theoretical analysis for {record.pool_size} selected numbers "
        f"(guarantee {record.match_threshold} of {record.draw_size}):\n"
        f"  Minimum: {record.floor} grids - any cover with fewer grids is wrong\n"
        f"  Subsets to cover: {n_subsets:,} "
        f"(one grid holds at most {per_grid})\n"
        f"  LB1 (simple): {record.lower_bound_simple}\n"
        f"  LB2 (Schonheim): {record.schonheim_bound}\n"
        f"  Upper estimate: {record.upper_bound}\n"
        f"  Realistic optimum: {low} - {high} grids"
    )


def simple_grid_equivalent(grid_sizes, draw_size=5):
    """A multiple grid of size k plays C(k, D) simple grids"""
    return sum(binomial(size, draw_size) for size in grid_sizes)


def validate_solution(n_pool, match_threshold, draw_size, proposed_grids, bounds=None):
    """
    Grade a proposed grid count (in simple grids) against the certified floor.

    IMPOSSIBLE means the solution cannot be a complete cover and must be
    rejected; SUSPECT is still valid but far from the floor.
    """
    if bounds is None:
        bounds = calculate_bounds(n_pool, match_threshold, draw_size)
    floor = bounds.floor

    if proposed_grids < floor:
        return SolutionGrade(
            CLASS_IMPOSSIBLE, proposed_grids, floor,
            f"IMPOSSIBLE: {proposed_grids} < {floor} (theoretical minimum)"
        )
    if proposed_grids == floor:
        return SolutionGrade(
            CLASS_OPTIMAL, proposed_grids, floor,
            f"OPTIMAL: {proposed_grids} = {floor} (theoretical minimum reached)"
        )
    if proposed_grids <= floor * 2:
        return SolutionGrade(
            CLASS_PLAUSIBLE, proposed_grids, floor,
            f"PLAUSIBLE: {proposed_grids} close to the minimum {floor}"
        )
    return SolutionGrade(
        CLASS_SUSPECT, proposed_grids, floor,
        f"SUSPECT: {proposed_grids} far from the minimum {floor}"
    )


def grade_solution(solution, pool_size, target, bounds=None):
    """Grade a Solution, counting multiple grids as their simple grids"""
    equivalent = simple_grid_equivalent(
        (g.size for g in solution.grids), target.draw_size
    )
    return validate_solution(
        pool_size, target.match_threshold, target.draw_size,
        equivalent, bounds=bounds
    )


def wheel_cost_estimate(n_pool, match_threshold=3, draw_size=5, base_price=2.20):
    """
    Estimate grids needed for a guarantee.
    Uses covering design lower bounds.
    """
    bounds = calculate_bounds(n_pool, match_threshold, draw_size)
    low, high = bounds.optimal_range
    return {
        'n_pool': n_pool,
        'subsets_to_cover': binomial(n_pool, match_threshold),
        'max_coverage_per_grid': binomial(draw_size, match_threshold),
        'estimated_min_grids': bounds.floor,
        'estimated_max_grids': high,
        'upper_bound': bounds.upper_bound,
        'estimated_min_cost': round(bounds.floor * base_price, 2),
        'note': 'Actual count depends on greedy algorithm efficiency'
    }
