"""
Guarantee validator.

Re-derives match counts between a grid set and draws, independently of the
solver's bookkeeping:

- exhaustive mode: every D-subset of the pool (optionally crossed with the
  chance numbers). A 100% success rate over the whole draw universe is the
  only proof of the guarantee.
- sampled mode: uniformly random draws from the full 5/49 game. A
  statistical estimate of robustness outside the pool, never a proof.

`hit_size` says how much of a draw the guarantee must hold for. With
hit_size = m (strict, the exhaustive default) a draw succeeds only if EVERY
m of its numbers sit together in one grid, which is exactly subset
coverage. With hit_size = D (plain, the sampled default) it is enough that
some grid matches m numbers of the whole draw.

Draws are scored in numpy batches through incidence matrices: a
(draws x 50) 0/1 matrix times the transposed (grids x 50) matrix gives
every match count at once.
"""
import itertools
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List

import numpy as np
from scipy import stats as scipy_stats

from loto_cover.config import (
    MAX_NUMBER, CHANCE_MIN, CHANCE_MAX, RANK_TABLE,
    MAX_EXHAUSTIVE_DRAWS, MAX_COUNTEREXAMPLES, DEFAULT_SAMPLE_COUNT,
    VALIDATION_BATCH_SIZE, logger
)
from loto_cover.core.combinatorics import binomial, chunked, k_combinations
from loto_cover.core.errors import (
    InvalidInput, ValidationExceededBudget, check_cancelled
)
from loto_cover.core.records import (
    CandidateGrid, Counterexample, Draw, GridStats, Solution,
    ValidationReport, parse_grid, MODE_EXHAUSTIVE, MODE_SAMPLED
)

SCOPE_POOL = 'pool'
SCOPE_FULL_GAME = 'full_game'
N_RANKS = len(RANK_TABLE)


def match_count(grid, draw):
    """Number of draw numbers present in the grid"""
    return len(set(grid) & set(draw))


def loto_rank(matches, has_chance=False):
    """Prize rank for a result, 0 when nothing is won"""
    for rank, (rank_matches, rank_chance, _, _) in RANK_TABLE.items():
        if rank_matches == matches and rank_chance == bool(has_chance):
            return rank
    return 0


def _rank_lookup(max_matches):
    """lookup[matches, chance_hit] -> rank"""
    table = np.zeros((max_matches + 1, 2), dtype=np.int8)
    for rank, (matches, chance, _, _) in RANK_TABLE.items():
        if matches <= max_matches:
            table[matches, int(chance)] = rank
    return table


def _grid_tuples(grids):
    if isinstance(grids, Solution):
        grids = grids.grids
    tuples = []
    for grid in grids:
        numbers = grid.numbers if isinstance(grid, CandidateGrid) else grid
        tuples.append(parse_grid(numbers))
    if not tuples:
        raise InvalidInput("No grids to validate")
    return tuples


def _incidence(rows):
    """0/1 matrix with one row per number set, one column per number 0..49"""
    matrix = np.zeros((len(rows), MAX_NUMBER + 1), dtype=np.int16)
    for i, row in enumerate(rows):
        matrix[i, list(row)] = 1
    return matrix


def _incidence_array(array):
    """Same as _incidence for a rectangular (rows x width) number array"""
    matrix = np.zeros((array.shape[0], MAX_NUMBER + 1), dtype=np.int16)
    matrix[np.arange(array.shape[0])[:, None], array] = 1
    return matrix


def _check_hit_size(hit_size, target, default):
    if hit_size is None:
        return default
    hit_size = int(hit_size)
    if not target.match_threshold <= hit_size <= target.draw_size:
        raise InvalidInput(
            f"hit_size must be in [{target.match_threshold}, {target.draw_size}], "
            f"got {hit_size}"
        )
    return hit_size


def _check_chance_number(chance_number):
    if chance_number is None:
        return None
    chance_number = int(chance_number)
    if not CHANCE_MIN <= chance_number <= CHANCE_MAX:
        raise InvalidInput(
            f"Chance number must be in [{CHANCE_MIN}, {CHANCE_MAX}], got {chance_number}"
        )
    return chance_number


# ============================================
# SINGLE DRAW
# ============================================
def check_single_draw(grids, draw, target, chance_number=None, hit_size=None):
    """
    Score every grid against one draw.

    `draw` is a Draw or a sequence of numbers. Plain by default: the
    guarantee is met when some grid matches m numbers. With hit_size = m
    every m numbers of the draw must be matched together by some grid;
    `failed_subsets` lists those that are not.
    """
    grid_list = _grid_tuples(grids)
    if not isinstance(draw, Draw):
        draw = Draw.from_numbers(draw, draw_size=target.draw_size)
    chance_number = _check_chance_number(chance_number)
    hit_size = _check_hit_size(hit_size, target, target.draw_size)
    m = target.match_threshold
    has_chance = (chance_number is not None
                  and draw.complementary is not None
                  and chance_number == draw.complementary)

    drawn = set(draw.numbers)
    results = []
    for index, grid in enumerate(grid_list):
        matches = sorted(drawn & set(grid))
        results.append({
            'grid_index': index,
            'grid_numbers': list(grid),
            'matches': matches,
            'match_count': len(matches),
            'rank': loto_rank(len(matches), has_chance),
        })

    best = max(results, key=lambda r: r['match_count'])
    winning_ranks = [r['rank'] for r in results if r['rank'] > 0]

    failed_subsets = []
    if best['match_count'] < m:
        failed_subsets.append(draw.numbers)
    elif hit_size < target.draw_size:
        grid_sets = [set(g) for g in grid_list]
        for subset in itertools.combinations(draw.numbers, hit_size):
            if not any(len(g.intersection(subset)) >= m for g in grid_sets):
                failed_subsets.append(subset)
    guarantee_met = not failed_subsets

    if guarantee_met:
        explanation = (f"Guarantee met: grid {best['grid_index'] + 1} matched "
                       f"{best['match_count']} numbers ({best['matches']})")
    elif best['match_count'] < m:
        explanation = (f"Guarantee NOT met: best result {best['match_count']} "
                       f"numbers on grid {best['grid_index'] + 1}")
    else:
        explanation = (f"Guarantee NOT met: {len(failed_subsets)} groups of "
                       f"{hit_size} drawn numbers have no grid with {m} of them "
                       f"(e.g. {list(failed_subsets[0])})")

    return {
        'draw': draw.to_dict(),
        'results': results,
        'hit_size': hit_size,
        'failed_subsets': [list(s) for s in failed_subsets],
        'guarantee_met': guarantee_met,
        'best_rank': min(winning_ranks) if winning_ranks else 0,
        'best_grid_index': best['grid_index'],
        'explanation': explanation,
    }


# ============================================
# SUBSET COVERAGE
# ============================================
def verify_coverage(grids, pool, target, sample_size=10):
    """
    Recompute subset coverage from the grid numbers alone.

    For EVERY m-subset of the pool, check that some grid contains it.
    """
    grid_sets = [set(g) for g in _grid_tuples(grids)]
    total = 0
    uncovered = []
    n_uncovered = 0

    for subset in k_combinations(pool.numbers, target.match_threshold):
        total += 1
        subset_set = set(subset)
        if not any(subset_set <= g for g in grid_sets):
            n_uncovered += 1
            if len(uncovered) < sample_size:
                uncovered.append(subset)

    if n_uncovered:
        logger.debug(f"Uncovered subsets: {n_uncovered} (e.g. {uncovered[:3]})")

    return {
        'total_subsets': total,
        'covered_subsets': total - n_uncovered,
        'uncovered_subsets': n_uncovered,
        'uncovered_sample': uncovered,
        'complete': n_uncovered == 0,
    }


# ============================================
# BATCH SCORING
# ============================================
@dataclass
class _BatchResult:
    tested: int
    successes: int
    wins: np.ndarray
    rank_counts: np.ndarray
    failures: int = 0
    counterexamples: List[Counterexample] = field(default_factory=list)
    eligible: int = 0
    eligible_successes: int = 0


class _Scorer:
    """Read-only scoring context shared by every batch"""

    def __init__(self, grid_list, target, chance_number, max_counterexamples,
                 hit_size):
        self.grids = grid_list
        self.grid_matrix_t = _incidence(grid_list).T
        self.m = target.match_threshold
        self.draw_size = target.draw_size
        self.lookup = _rank_lookup(target.draw_size)
        self.chance_number = chance_number
        self.max_counterexamples = max_counterexamples
        self.hit_size = hit_size
        self.position_sets = [
            list(p) for p in itertools.combinations(range(target.draw_size), hit_size)
        ]

    def _strict(self, array, ok):
        """
        Check every hit_size-subset of each draw.

        Returns (ok, failed_position_set, best_index, best_count) where the
        last three describe the first failing subset of each failed draw.
        """
        n = array.shape[0]
        failed_at = np.full(n, -1, dtype=np.int64)
        fail_index = np.zeros(n, dtype=np.int64)
        fail_count = np.zeros(n, dtype=np.int64)

        for p, positions in enumerate(self.position_sets):
            sub_matches = _incidence_array(array[:, positions]) @ self.grid_matrix_t
            sub_best = sub_matches.max(axis=1)
            first_bad = ok & (sub_best < self.m)
            failed_at[first_bad] = p
            fail_index[first_bad] = sub_matches.argmax(axis=1)[first_bad]
            fail_count[first_bad] = sub_best[first_bad]
            ok = ok & ~first_bad

        return ok, failed_at, fail_index, fail_count

    def score(self, draws, complementaries, pool_vector=None):
        """
        draws: list of number tuples; complementaries: array (or None).
        """
        array = np.asarray(draws, dtype=np.int64).reshape(len(draws), self.draw_size)
        draw_matrix = _incidence_array(array)
        matches = draw_matrix @ self.grid_matrix_t

        if self.chance_number is not None and complementaries is not None:
            chance_hit = (np.asarray(complementaries) == self.chance_number).astype(np.int8)
        else:
            chance_hit = np.zeros(len(draws), dtype=np.int8)

        best_count = matches.max(axis=1)
        best_index = matches.argmax(axis=1)
        ok = best_count >= self.m
        failed_at = np.full(len(draws), -1, dtype=np.int64)
        if self.hit_size < self.draw_size:
            ok, failed_at, strict_index, strict_count = self._strict(array, ok)
            best_index = np.where(failed_at >= 0, strict_index, best_index)
            best_count = np.where(failed_at >= 0, strict_count, best_count)

        ranks = self.lookup[matches, chance_hit[:, None]]
        wins = (ranks > 0).sum(axis=0)
        rank_counts = np.stack(
            [(ranks == r).sum(axis=0) for r in range(1, N_RANKS + 1)], axis=1
        )

        result = _BatchResult(
            tested=len(draws),
            successes=int(ok.sum()),
            wins=wins,
            rank_counts=rank_counts,
        )

        failing = np.flatnonzero(~ok)
        result.failures = int(failing.size)
        for i in failing[:self.max_counterexamples]:
            draw = tuple(int(n) for n in array[i])
            if failed_at[i] >= 0:
                failed = tuple(int(n) for n in array[i, self.position_sets[failed_at[i]]])
            else:
                failed = draw
            grid = self.grids[int(best_index[i])]
            result.counterexamples.append(Counterexample(
                draw=draw,
                complementary=(int(complementaries[i])
                               if complementaries is not None else None),
                failed_subset=failed,
                best_grid_index=int(best_index[i]),
                best_matches=tuple(sorted(set(grid) & set(failed))),
                best_match_count=int(best_count[i]),
            ))

        if pool_vector is not None:
            eligible = (draw_matrix @ pool_vector) >= self.m
            result.eligible = int(eligible.sum())
            result.eligible_successes = int((eligible & ok).sum())

        return result


def _reduce(results, n_grids, max_counterexamples):
    tested = successes = failures = eligible = eligible_successes = 0
    wins = np.zeros(n_grids, dtype=np.int64)
    rank_counts = np.zeros((n_grids, N_RANKS), dtype=np.int64)
    counterexamples = []

    for r in results:
        tested += r.tested
        successes += r.successes
        failures += r.failures
        eligible += r.eligible
        eligible_successes += r.eligible_successes
        wins += r.wins
        rank_counts += r.rank_counts
        room = max_counterexamples - len(counterexamples)
        if room > 0:
            counterexamples.extend(r.counterexamples[:room])

    return {
        'tested': tested,
        'successes': successes,
        'failures': failures,
        'eligible': eligible,
        'eligible_successes': eligible_successes,
        'wins': wins,
        'rank_counts': rank_counts,
        'counterexamples': counterexamples,
    }


def _grid_stats(grid_list, wins, rank_counts, tested):
    stats = []
    for index, grid in enumerate(grid_list):
        ranks = tuple(
            (rank, int(rank_counts[index, rank - 1]))
            for rank in range(1, N_RANKS + 1)
            if rank_counts[index, rank - 1] > 0
        )
        stats.append(GridStats(
            grid_index=index,
            numbers=grid,
            win_count=int(wins[index]),
            win_rate=(int(wins[index]) / tested * 100) if tested else 0.0,
            rank_counts=ranks,
        ))
    return tuple(stats)


# ============================================
# EXHAUSTIVE MODE
# ============================================
def validate_exhaustive(grids, pool, target, complementary_numbers=None,
                        chance_number=None, max_draws=MAX_EXHAUSTIVE_DRAWS,
                        max_counterexamples=MAX_COUNTEREXAMPLES,
                        batch_size=VALIDATION_BATCH_SIZE, n_workers=1,
                        hit_size=None, cancel_event=None):
    """
    Test the grid set against EVERY draw made of pool numbers.

    Strict by default: 100% success here holds exactly when every m-subset
    of the pool lies in some grid. Raises ValidationExceededBudget instead
    of testing a partial universe.
    """
    start = time.perf_counter()
    grid_list = _grid_tuples(grids)
    chance_number = _check_chance_number(chance_number)
    hit_size = _check_hit_size(hit_size, target, target.match_threshold)

    comps = None
    if complementary_numbers:
        comps = sorted({int(c) for c in complementary_numbers})
        bad = [c for c in comps if not CHANCE_MIN <= c <= CHANCE_MAX]
        if bad:
            raise InvalidInput(f"Chance numbers out of range [{CHANCE_MIN}, {CHANCE_MAX}]: {bad}")

    n_main = binomial(len(pool.numbers), target.draw_size)
    total = n_main * (len(comps) if comps else 1)

    if max_draws is not None and total > max_draws:
        raise ValidationExceededBudget(
            total, max_draws,
            hint="Reduce the pool, raise the cap or use sampled mode"
        )

    logger.info(f"Exhaustive test: {total:,} draws from your "
                f"{len(pool.numbers)} numbers against {len(grid_list)} grids")

    scorer = _Scorer(grid_list, target, chance_number, max_counterexamples, hit_size)
    draws = k_combinations(pool.numbers, target.draw_size)

    def process(batch):
        check_cancelled(cancel_event, "exhaustive validation")
        if comps:
            expanded = [d for d in batch for _ in comps]
            comp_array = np.tile(np.array(comps), len(batch))
            return scorer.score(expanded, comp_array)
        return scorer.score(batch, None)

    batches = chunked(draws, batch_size)
    if n_workers and n_workers > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            results = list(executor.map(process, batches))
    else:
        results = [process(batch) for batch in batches]

    totals = _reduce(results, len(grid_list), max_counterexamples)

    report = ValidationReport(
        mode=MODE_EXHAUSTIVE,
        scope=SCOPE_POOL,
        match_threshold=target.match_threshold,
        hit_size=hit_size,
        grid_count=len(grid_list),
        total_draws=total,
        tested_draws=totals['tested'],
        successes=totals['successes'],
        failures=totals['failures'],
        counterexamples=tuple(totals['counterexamples']),
        grid_stats=_grid_stats(grid_list, totals['wins'],
                               totals['rank_counts'], totals['tested']),
        elapsed_seconds=time.perf_counter() - start,
        counterexamples_truncated=totals['failures'] > len(totals['counterexamples']),
    )

    logger.info(f"Exhaustive test done: {report.successes:,}/{report.tested_draws:,} "
                f"successes ({report.success_rate:.2f}%)")
    if not report.is_guarantee_valid:
        logger.warning(f"GUARANTEE INVALIDATED: {report.failures:,} draws "
                       f"without {target.match_threshold}+ matches")
    return report


# ============================================
# SAMPLED MODE
# ============================================
def _clopper_pearson(successes, n, confidence):
    """Exact binomial confidence interval, in percent"""
    if n == 0:
        return (0.0, 100.0)
    alpha = 1 - confidence
    low = 0.0 if successes == 0 else scipy_stats.beta.ppf(alpha / 2, successes, n - successes + 1)
    high = 1.0 if successes == n else scipy_stats.beta.ppf(1 - alpha / 2, successes + 1, n - successes)
    return (float(low) * 100, float(high) * 100)


def random_draws(rng, n_draws, draw_size):
    """Uniform draws from the full game: numbers (n x D) and chance numbers"""
    keys = rng.random((n_draws, MAX_NUMBER))
    numbers = np.sort(np.argsort(keys, axis=1)[:, :draw_size] + 1, axis=1)
    chance = rng.integers(CHANCE_MIN, CHANCE_MAX + 1, size=n_draws)
    return numbers, chance


def validate_sampled(grids, target, pool=None, n_samples=DEFAULT_SAMPLE_COUNT,
                     seed=None, chance_number=None,
                     max_counterexamples=MAX_COUNTEREXAMPLES,
                     batch_size=VALIDATION_BATCH_SIZE, confidence=0.95,
                     hit_size=None, cancel_event=None):
    """
    Estimate guarantee strength on random full-game draws.

    The report is labelled sampled / full_game and never counts as a proof.
    When the pool is given, draws sharing at least m numbers with it are
    counted as eligible, with their own success rate.
    """
    if n_samples is None or n_samples < 1:
        raise InvalidInput(f"n_samples must be positive, got {n_samples}")

    start = time.perf_counter()
    grid_list = _grid_tuples(grids)
    chance_number = _check_chance_number(chance_number)
    hit_size = _check_hit_size(hit_size, target, target.draw_size)
    rng = np.random.default_rng(seed)

    pool_vector = None
    if pool is not None:
        pool_vector = np.zeros(MAX_NUMBER + 1, dtype=np.int16)
        pool_vector[list(pool.numbers)] = 1

    logger.info(f"Sampled test: {n_samples:,} random {target.draw_size}/{MAX_NUMBER} "
                f"draws against {len(grid_list)} grids (estimate, not a proof)")

    scorer = _Scorer(grid_list, target, chance_number, max_counterexamples, hit_size)
    results = []
    remaining = n_samples
    while remaining > 0:
        check_cancelled(cancel_event, "sampled validation")
        size = min(batch_size, remaining)
        numbers, chance = random_draws(rng, size, target.draw_size)
        draws = [tuple(row) for row in numbers.tolist()]
        results.append(scorer.score(draws, chance, pool_vector))
        remaining -= size

    totals = _reduce(results, len(grid_list), max_counterexamples)

    report = ValidationReport(
        mode=MODE_SAMPLED,
        scope=SCOPE_FULL_GAME,
        match_threshold=target.match_threshold,
        hit_size=hit_size,
        grid_count=len(grid_list),
        total_draws=binomial(MAX_NUMBER, target.draw_size),
        tested_draws=totals['tested'],
        successes=totals['successes'],
        failures=totals['failures'],
        counterexamples=tuple(totals['counterexamples']),
        grid_stats=_grid_stats(grid_list, totals['wins'],
                               totals['rank_counts'], totals['tested']),
        elapsed_seconds=time.perf_counter() - start,
        counterexamples_truncated=totals['failures'] > len(totals['counterexamples']),
        eligible_draws=totals['eligible'] if pool is not None else None,
        eligible_successes=totals['eligible_successes'] if pool is not None else None,
        confidence_interval=_clopper_pearson(
            totals['successes'], totals['tested'], confidence
        ),
        seed=seed,
    )

    low, high = report.confidence_interval
    logger.info(f"Sampled estimate: {report.success_rate:.2f}% of random draws "
                f"reach {target.match_threshold}+ matches "
                f"({confidence:.0%} CI {low:.2f}-{high:.2f}%)")
    return report


# ============================================
# REPORT
# ============================================
def format_validation_report(report, max_failures=5, max_grids=10):
    """Plain-text report of a validation run"""
    lines = []
    if report.mode == MODE_EXHAUSTIVE:
        lines.append("EXHAUSTIVE TEST REPORT")
    else:
        lines.append("SAMPLED TEST REPORT (statistical estimate, not a proof)")
    lines.append("=" * 32)
    lines.append("")
    lines.append(f"Execution time: {report.elapsed_seconds:.2f}s")
    lines.append(f"Draws tested: {report.tested_draws:,} of {report.total_draws:,} "
                 f"({report.universe_coverage:.2%} of the {report.scope} universe)")
    lines.append(f"Successes: {report.successes:,}")
    lines.append(f"Failures: {report.failures:,}")
    lines.append(f"Success rate: {report.success_rate:.4f}%")
    if report.confidence_interval is not None:
        low, high = report.confidence_interval
        lines.append(f"Confidence interval: {low:.2f}% - {high:.2f}%")
    if report.eligible_draws is not None:
        rate = report.eligible_success_rate
        rate_text = f"{rate:.2f}%" if rate is not None else "n/a"
        lines.append(f"Draws with {report.match_threshold}+ pool numbers: "
                     f"{report.eligible_draws:,} (success {rate_text})")
    lines.append("")

    if report.is_guarantee_valid:
        lines.append("GUARANTEE MATHEMATICALLY PROVEN")
        lines.append(f"All {report.tested_draws:,} possible draws meet the guarantee.")
    elif report.mode == MODE_EXHAUSTIVE:
        lines.append("GUARANTEE INVALIDATED")
        lines.append(f"{report.failures:,} draws do not meet the guarantee.")
    lines.append("")

    if report.counterexamples:
        lines.append("Failure examples:")
        for i, failure in enumerate(report.counterexamples[:max_failures], 1):
            chance = (f" + {failure.complementary}"
                      if failure.complementary is not None else "")
            lines.append(f"{i}. Draw: {', '.join(map(str, failure.draw))}{chance}")
            if failure.failed_subset != failure.draw:
                lines.append(f"   Unmatched group: {', '.join(map(str, failure.failed_subset))}")
            lines.append(f"   Best result: {failure.best_match_count} numbers "
                         f"(grid {failure.best_grid_index + 1})")
        lines.append("")

    lines.append("GRID PERFORMANCE:")
    ranked = sorted(report.grid_stats, key=lambda s: s.win_rate, reverse=True)
    for i, s in enumerate(ranked[:max_grids], 1):
        lines.append(f"{i}. Grid {s.grid_index + 1}: {s.win_rate:.2f}% wins")
        if s.rank_counts:
            rank, count = s.rank_counts[0]
            lines.append(f"   Best rank: {rank} ({count} times)")

    return "\n".join(lines)
