"""
Tests for the solver, the guarantee validator, scenarios and the pipeline
Run with pytest or directly: python test_guarantee.py
"""
import itertools
import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

import pytest

from loto_cover.config import MAX_CANDIDATES, MAX_POOL_SIZE
from loto_cover.core.candidates import (
    CandidateGenerator, candidate_space_size, covered_subset_keys
)
from loto_cover.core.combinatorics import binomial
from loto_cover.core.errors import (
    AnalysisCancelled, InvalidInput, SolverAborted, ValidationExceededBudget
)
from loto_cover.core.records import (
    CandidateGrid, Draw, GridPriceTable, GuaranteeTarget, Pool,
    STRATEGY_GREEDY, STRATEGY_PURE_LARGE, STRATEGY_PURE_SMALL,
    STATUS_ABORTED, STATUS_COVERED, MODE_SAMPLED, CLASS_IMPOSSIBLE,
    CLASS_OPTIMAL, CLASS_PLAUSIBLE
)
from loto_cover.core.scenarios import analyze_scenarios, match_distribution
from loto_cover.core.set_cover import (
    ABORT_BUDGET, ABORT_GRID_CAP, ABORT_NO_PROGRESS, SolverSettings,
    greedy_step, optimize_grids, pure_large_baseline, pure_small_baseline,
    solve_greedy
)
from loto_cover.core.universe import build_coverage_universe
from loto_cover.core.bounds import grade_solution
from loto_cover.core.validator import (
    check_single_draw, format_validation_report, loto_rank, match_count,
    validate_exhaustive, validate_sampled, verify_coverage
)
from loto_cover.pipelines.analyze_pool import run_analysis

TARGET = GuaranteeTarget(3, 5)
POOL_10 = Pool.from_numbers(range(1, 11))
SIMPLE_ONLY = GridPriceTable.restricted([5])

# Two disjoint grids over a 10-number pool: every draw from the pool has
# 3 numbers in one grid, yet most triples of the pool are in no grid.
SPLIT_POOL = [18, 12, 14, 41, 43, 48, 20, 21, 24, 7]
SPLIT_GRIDS = [[18, 12, 14, 41, 43], [48, 20, 21, 24, 7]]
SPLIT_DRAW = [18, 12, 14, 48, 20]


def _grid(numbers, cost):
    return CandidateGrid(numbers=tuple(numbers), cost=cost,
                         covered_keys=covered_subset_keys(numbers, 3))


def _simple_solution():
    return optimize_grids(POOL_10, TARGET, SolverSettings(price_table=SIMPLE_ONLY))


# ============================================
# SOLVER
# ============================================
def test_greedy_step_prefers_cheaper_per_subset():
    remaining = set(covered_subset_keys((1, 2, 3, 4, 5), 3))
    simple = _grid((1, 2, 3, 4, 5), 2.20)
    multiple = _grid((1, 2, 3, 4, 5, 6, 7), 46.20)

    best, newly = greedy_step(remaining, [multiple, simple])
    assert best is simple
    assert newly == remaining
    assert len(remaining) == 10


def test_greedy_step_keeps_first_on_full_tie():
    remaining = set(covered_subset_keys((1, 2, 3), 3))
    a = _grid((1, 2, 3, 4, 5), 2.20)
    b = _grid((1, 2, 3, 6, 7), 2.20)
    assert greedy_step(remaining, [a, b])[0] is a
    assert greedy_step(remaining, [b, a])[0] is b
    assert greedy_step(remaining, [_grid((4, 5, 6, 7, 8), 2.20)]) == (None, frozenset())


def test_greedy_n10_complete_and_cheaper():
    solution = _simple_solution()
    assert solution.status == STATUS_COVERED
    assert solution.is_complete
    assert solution.strategy == STRATEGY_GREEDY
    assert solution.covered_count == 120
    assert 14 <= solution.grid_count < 252
    assert solution.total_cost == pytest.approx(solution.grid_count * 2.20)
    assert verify_coverage(solution, POOL_10, TARGET)['complete']
    assert grade_solution(solution, 10, TARGET).classification != CLASS_IMPOSSIBLE

    comparison = {c.strategy: c for c in solution.comparison}
    assert comparison[STRATEGY_PURE_SMALL].cost == pytest.approx(554.40)
    assert not comparison[STRATEGY_PURE_LARGE].available


def test_greedy_is_deterministic():
    first = _simple_solution()
    second = _simple_solution()
    assert first.number_tuples == second.number_tuples
    assert first.total_cost == second.total_cost


def test_tie_prefers_greedy():
    # With all sizes the whole pool is one grid, priced like both references
    solution = optimize_grids(POOL_10, TARGET)
    assert solution.strategy == STRATEGY_GREEDY
    assert solution.grid_count == 1
    assert solution.grids[0].size == 10
    assert solution.total_cost == pytest.approx(554.40)


def test_abort_on_grid_cap():
    universe = build_coverage_universe(POOL_10, TARGET)
    candidates = CandidateGenerator(POOL_10, TARGET, SIMPLE_ONLY)
    solution = solve_greedy(universe, candidates, max_grids=3)

    assert solution.status == STATUS_ABORTED
    assert solution.abort_reason == ABORT_GRID_CAP
    assert solution.grid_count == 3
    assert solution.covered_count <= 30
    assert not solution.is_complete
    with pytest.raises(SolverAborted):
        solution.require_complete()


def test_abort_without_progress():
    universe = build_coverage_universe(POOL_10, TARGET)
    small_pool = Pool.from_numbers(range(1, 7))
    candidates = CandidateGenerator(small_pool, TARGET, SIMPLE_ONLY)
    solution = solve_greedy(universe, candidates)

    assert solution.abort_reason == ABORT_NO_PROGRESS
    assert solution.covered_count == 20
    assert solution.uncovered_count == 100


def test_budget_returns_aborted_greedy():
    settings = SolverSettings(price_table=SIMPLE_ONLY, max_budget=20.0)
    solution = optimize_grids(POOL_10, TARGET, settings)

    assert solution.status == STATUS_ABORTED
    assert solution.abort_reason == ABORT_BUDGET
    assert solution.grid_count == 9
    assert solution.total_cost <= 20.0
    assert len(solution.comparison) == 3


def test_baselines():
    small = pure_small_baseline(POOL_10, TARGET, GridPriceTable.from_mapping())
    assert small.grid_count == 252
    assert small.cost == pytest.approx(554.40)

    large = pure_large_baseline(POOL_10, GridPriceTable.from_mapping())
    assert large.available and large.grid_count == 1
    assert large.cost == pytest.approx(554.40)

    pool_11 = Pool.from_numbers(range(1, 12))
    assert not pure_large_baseline(pool_11, GridPriceTable.from_mapping()).available
    assert pure_small_baseline(pool_11, TARGET, SIMPLE_ONLY).cost == pytest.approx(1016.40)


def test_solver_settings_validation():
    with pytest.raises(InvalidInput):
        SolverSettings(max_grids=0)
    with pytest.raises(InvalidInput):
        SolverSettings(max_budget=-5)
    with pytest.raises(InvalidInput):
        SolverSettings(n_workers=0)


def test_indexed_greedy_matches_greedy_step():
    pool = Pool.from_numbers(range(1, 12))
    universe = build_coverage_universe(pool, TARGET)
    generator = CandidateGenerator(pool, TARGET, GridPriceTable.restricted([5, 7]))
    stream = list(generator)

    remaining = set(universe.keys)
    expected = []
    while remaining:
        best, newly = greedy_step(remaining, stream)
        expected.append(best.numbers)
        remaining -= newly

    solution = solve_greedy(universe, generator)
    assert solution.is_complete
    assert solution.number_tuples == expected

    # Same picks from a plain grid list and from several threads
    assert solve_greedy(universe, stream).number_tuples == expected
    assert solve_greedy(universe, generator, n_workers=3).number_tuples == expected


def test_candidate_index_columns():
    universe = build_coverage_universe(POOL_10, TARGET)
    index = CandidateGenerator(POOL_10, TARGET, GridPriceTable.from_mapping()).build_index(universe)

    assert len(index) == 428
    assert [b.size for b in index.blocks] == [5, 7, 8, 9, 10]
    assert index.blocks[1].columns.shape == (120, 35)

    block = index.blocks[0]
    first = tuple(int(n) for n in block.numbers[0])
    assert first == (1, 2, 3, 4, 5)
    covered = {universe.subsets[c] for c in block.columns[0]}
    assert covered == set(itertools.combinations(first, 3))

    uncovered = index.uncovered_mask()
    assert uncovered.sum() == 120
    block_best, row, n_new = index.best(uncovered)
    assert block_best.size == 10 and n_new == 120


def test_default_ceilings_admit_largest_pool():
    pool = Pool.from_numbers(range(1, MAX_POOL_SIZE + 1))
    prices = GridPriceTable.from_mapping()
    assert candidate_space_size(MAX_POOL_SIZE, prices, 5) <= MAX_CANDIDATES

    generator = CandidateGenerator(pool, TARGET, prices)
    assert generator.counts[10] == 184_756
    assert len(generator) == 571_710


# ============================================
# OTHER GUARANTEE LEVELS
# ============================================
POOL_9 = Pool.from_numbers(range(1, 10))


def _check_level(m, floor, worst_case):
    target = GuaranteeTarget(m, 5)
    solution = optimize_grids(POOL_9, target, SolverSettings(price_table=SIMPLE_ONLY))
    assert solution.is_complete
    assert solution.strategy == STRATEGY_GREEDY

    grade = grade_solution(solution, 9, target)
    assert grade.floor == floor
    assert floor <= solution.grid_count <= 2 * floor
    assert grade.classification in (CLASS_OPTIMAL, CLASS_PLAUSIBLE)

    coverage = verify_coverage(solution, POOL_9, target)
    assert coverage['total_subsets'] == binomial(9, m)
    assert coverage['complete']

    report = validate_exhaustive(solution, POOL_9, target)
    assert report.hit_size == m
    assert report.tested_draws == 126
    assert report.is_guarantee_valid

    analysis = analyze_scenarios(9, solution, target)
    assert analysis.scenario(m - 1).worst_case_payout == 0.0
    for c in range(m, 6):
        assert analysis.scenario(c).worst_case_payout == worst_case
    return solution


def test_two_number_guarantee():
    _check_level(2, floor=4, worst_case=5.0)


def test_four_number_guarantee():
    solution = _check_level(4, floor=26, worst_case=500.0)
    # Dropping any grid leaves some 4-subset uncovered
    partial = solution.grids[:-1]
    report = validate_exhaustive(partial, POOL_9, GuaranteeTarget(4, 5))
    assert report.failures > 0
    assert len(report.counterexamples[0].failed_subset) == 4


# ============================================
# VALIDATOR
# ============================================
def test_ranks_and_matches():
    assert match_count([1, 2, 3, 4, 5], [4, 5, 6, 7, 8]) == 2
    assert loto_rank(5, True) == 1
    assert loto_rank(5, False) == 2
    assert loto_rank(3, False) == 6
    assert loto_rank(0, True) == 10
    assert loto_rank(1, False) == 0


def test_single_draw_with_chance():
    draw = Draw.from_numbers([1, 2, 3, 10, 11], complementary=4)
    result = check_single_draw([[1, 2, 3, 4, 5], [6, 7, 8, 9, 10]], draw,
                               TARGET, chance_number=4)
    assert result['guarantee_met']
    assert result['results'][0]['match_count'] == 3
    assert result['results'][0]['rank'] == 5
    assert result['best_rank'] == 5
    assert result['best_grid_index'] == 0


def test_split_grids_flagged():
    pool = Pool.from_numbers(SPLIT_POOL)

    coverage = verify_coverage(SPLIT_GRIDS, pool, TARGET)
    assert not coverage['complete']
    assert coverage['covered_subsets'] == 20
    assert coverage['uncovered_subsets'] == 100

    strict = check_single_draw(SPLIT_GRIDS, SPLIT_DRAW, TARGET, hit_size=3)
    assert not strict['guarantee_met']
    assert strict['results'][0]['match_count'] == 3
    assert strict['results'][1]['match_count'] == 2
    assert [12, 14, 20] in strict['failed_subsets']
    assert len(strict['failed_subsets']) == 9

    # Counting matches on the whole draw alone misses the flaw
    plain = check_single_draw(SPLIT_GRIDS, SPLIT_DRAW, TARGET)
    assert plain['guarantee_met']

    report = validate_exhaustive(SPLIT_GRIDS, pool, TARGET, max_counterexamples=300)
    assert not report.is_guarantee_valid
    assert report.total_draws == report.tested_draws == 252
    assert report.successes == 2
    assert report.failures == 250
    failures = {c.draw: c for c in report.counterexamples}
    flagged = failures[(12, 14, 18, 20, 48)]
    assert flagged.failed_subset == (12, 14, 20)
    assert flagged.best_match_count == 2
    assert "GUARANTEE INVALIDATED" in format_validation_report(report)


def test_plain_exhaustive_is_not_a_proof():
    pool = Pool.from_numbers(SPLIT_POOL)
    report = validate_exhaustive(SPLIT_GRIDS, pool, TARGET, hit_size=5)
    assert report.failures == 0
    assert not report.is_guarantee_valid


def test_complete_cover_passes_every_draw():
    solution = _simple_solution()
    report = validate_exhaustive(solution, POOL_10, TARGET)
    assert report.is_guarantee_valid
    assert report.successes == 252
    assert report.success_rate == 100.0
    assert report.universe_coverage == 1.0
    assert len(report.grid_stats) == solution.grid_count
    assert "GUARANTEE MATHEMATICALLY PROVEN" in format_validation_report(report)

    frame = report.grid_stats_frame()
    assert len(frame) == solution.grid_count
    assert set(frame.columns) >= {'grid', 'wins', 'win_rate_pct'}


def test_aborted_cover_fails_some_draw():
    universe = build_coverage_universe(POOL_10, TARGET)
    partial = solve_greedy(universe, CandidateGenerator(POOL_10, TARGET, SIMPLE_ONLY),
                           max_grids=5)
    report = validate_exhaustive(partial, POOL_10, TARGET)
    assert report.failures > 0
    assert report.counterexamples
    assert not report.is_guarantee_valid


def test_exhaustive_threads_and_chance_numbers():
    solution = _simple_solution()
    single = validate_exhaustive(solution, POOL_10, TARGET, batch_size=50)
    threaded = validate_exhaustive(solution, POOL_10, TARGET, batch_size=50, n_workers=4)
    assert single.successes == threaded.successes
    assert [s.win_count for s in single.grid_stats] == [s.win_count for s in threaded.grid_stats]

    with_chance = validate_exhaustive(solution, POOL_10, TARGET,
                                      complementary_numbers=[1, 2], chance_number=1)
    assert with_chance.total_draws == 504
    assert with_chance.is_guarantee_valid


def test_exhaustive_budget():
    with pytest.raises(ValidationExceededBudget) as info:
        validate_exhaustive(SPLIT_GRIDS, Pool.from_numbers(SPLIT_POOL), TARGET, max_draws=100)
    assert info.value.size == 252


def test_sampled_mode_labelling():
    solution = _simple_solution()
    report = validate_sampled(solution, TARGET, pool=POOL_10, n_samples=2000, seed=7)

    assert report.mode == MODE_SAMPLED
    assert report.scope == 'full_game'
    assert not report.is_guarantee_valid
    assert report.tested_draws == 2000
    assert report.total_draws == 1_906_884
    low, high = report.confidence_interval
    assert low <= report.success_rate <= high
    assert report.eligible_draws > 0
    assert report.eligible_success_rate == 100.0

    again = validate_sampled(solution, TARGET, pool=POOL_10, n_samples=2000, seed=7)
    assert again.successes == report.successes

    with pytest.raises(InvalidInput):
        validate_sampled(solution, TARGET, n_samples=0)


# ============================================
# SCENARIOS
# ============================================
def test_match_distribution():
    assert match_distribution(10, 3) == {0: 21, 1: 105, 2: 105, 3: 21}
    assert sum(match_distribution(10, 5).values()) == 252


def test_scenarios_with_complete_solution():
    solution = _simple_solution()
    analysis = analyze_scenarios(10, solution, TARGET)

    assert analysis.wheel_grid_count == 252
    assert len(analysis.scenarios) == 5

    three = analysis.scenario(3)
    assert three.guaranteed_payout == pytest.approx(945.0)
    assert three.worst_case_payout == 20.0
    assert three.net_worst_case == pytest.approx(20.0 - solution.total_cost)
    assert analysis.scenario(2).worst_case_payout == 0.0

    five = analysis.scenario(5)
    assert five.max_possible_rank == 1
    assert five.guaranteed_payout == pytest.approx(102_634 + 25 * 500 + 100 * 20 + 100 * 5)
    assert analysis.scenario(1).max_possible_rank == 9

    frame = analysis.to_frame()
    assert list(frame['correspondences']) == ['1/5', '2/5', '3/5', '4/5', '5/5']


def test_scenarios_without_solution():
    analysis = analyze_scenarios(8)
    assert all(s.worst_case_payout == 0.0 for s in analysis.scenarios)
    assert all(s.net_worst_case is None for s in analysis.scenarios)
    assert not any(s.worth_playing for s in analysis.scenarios)
    with pytest.raises(InvalidInput):
        analyze_scenarios(4)


# ============================================
# PIPELINE
# ============================================
def test_pipeline_end_to_end():
    result = run_analysis(range(1, 11), grid_sizes=[5])
    assert result.solution.is_complete
    assert result.coverage['complete']
    assert result.guarantee_proven
    assert result.bounds.floor == 14
    assert result.grade.is_valid

    data = result.to_dict()
    assert data['guarantee_proven'] is True
    assert data['pool']['size'] == 10
    assert len(data['scenarios']['scenarios']) == 5


def test_pipeline_sampled_and_errors():
    result = run_analysis(range(1, 11), grid_sizes=[5], validation_mode='sampled',
                          n_samples=500, seed=1)
    assert result.validation.mode == MODE_SAMPLED
    assert not result.guarantee_proven

    with pytest.raises(InvalidInput):
        run_analysis(range(1, 11), validation_mode='partial')
    with pytest.raises(InvalidInput):
        run_analysis([1, 2, 3, 4])
    with pytest.raises(ValidationExceededBudget):
        run_analysis(range(1, 11), grid_sizes=[5], max_draws=100)


def test_pipeline_uses_custom_prices():
    prices = GridPriceTable.from_mapping({5: 3.00, 7: 60.00})
    result = run_analysis(range(1, 11), settings=SolverSettings(price_table=prices))
    assert result.scenarios.wheel_cost == pytest.approx(252 * 3.00)
    assert result.solution.total_cost == pytest.approx(
        sum(prices.cost(g.size) for g in result.solution.grids)
    )

    # Without simple grids the wheel is still priced at the base price
    sevens = run_analysis(range(1, 11), grid_sizes=[7])
    assert all(g.size == 7 for g in sevens.solution.grids)
    assert sevens.scenarios.wheel_cost == pytest.approx(252 * 2.20)


def test_cancellation():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(AnalysisCancelled):
        optimize_grids(POOL_10, TARGET, cancel_event=cancel)
    with pytest.raises(AnalysisCancelled):
        validate_exhaustive(SPLIT_GRIDS, Pool.from_numbers(SPLIT_POOL), TARGET,
                            cancel_event=cancel)
    with pytest.raises(AnalysisCancelled):
        run_analysis(range(1, 11), cancel_event=cancel)


def main():
    print()
    print("=" * 60)
    print("  LOTO COVER - GUARANTEE TESTS")
    print("=" * 60)

    tests = [(name, fn) for name, fn in globals().items()
             if name.startswith("test_") and callable(fn)]

    results = []
    for name, test_fn in tests:
        try:
            test_fn()
            passed = True
        except Exception as e:
            print(f"  FAILED {name}: {e}")
            passed = False
        results.append((name, passed))

    print("\n" + "=" * 60)
    print("  RESULTS")
    print("=" * 60)
    for name, passed in results:
        icon = "✅" if passed else "❌"
        print(f"  {icon} {name}: {'PASS' if passed else 'FAIL'}")

    n_passed = sum(1 for _, p in results if p)
    print(f"\n  Total: {n_passed}/{len(results)} passed")
    if n_passed == len(results):
        print("\n  ALL TESTS PASSED!")
    print("=" * 60)
    return n_passed == len(results)


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
