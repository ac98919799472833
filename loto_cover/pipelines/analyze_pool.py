"""
End-to-end analysis of a pool: optimize, bound, validate, price scenarios
"""
from dataclasses import dataclass, replace
from typing import Optional

from loto_cover.config import (
    DEFAULT_DRAW_SIZE, DEFAULT_MATCH_THRESHOLD, DEFAULT_SAMPLE_COUNT,
    MAX_EXHAUSTIVE_DRAWS, logger
)
from loto_cover.core.bounds import calculate_bounds, explain_bounds, grade_solution
from loto_cover.core.errors import InvalidInput, InvalidSolution
from loto_cover.core.records import (
    BoundRecord, GridPriceTable, GuaranteeTarget, Pool, Solution, SolutionGrade,
    ValidationReport, CLASS_IMPOSSIBLE, MODE_EXHAUSTIVE, MODE_SAMPLED
)
from loto_cover.core.scenarios import ScenarioAnalysis, analyze_scenarios
from loto_cover.core.set_cover import SolverSettings, optimize_grids
from loto_cover.core.validator import (
    validate_exhaustive, validate_sampled, verify_coverage
)


@dataclass(frozen=True)
class AnalysisResult:
    pool: Pool
    target: GuaranteeTarget
    solution: Solution
    bounds: BoundRecord
    grade: SolutionGrade
    coverage: dict
    validation: Optional[ValidationReport]
    scenarios: ScenarioAnalysis

    @property
    def guarantee_proven(self):
        return self.validation is not None and self.validation.is_guarantee_valid

    def to_dict(self):
        return {
            'pool': self.pool.to_dict(),
            'target': self.target.to_dict(),
            'solution': self.solution.to_dict(),
            'bounds': self.bounds.to_dict(),
            'bounds_explanation': explain_bounds(self.bounds),
            'grade': self.grade.to_dict(),
            'coverage': {k: ([list(s) for s in v] if k == 'uncovered_sample' else v)
                         for k, v in self.coverage.items()},
            'validation': self.validation.to_dict() if self.validation else None,
            'guarantee_proven': self.guarantee_proven,
            'scenarios': self.scenarios.to_dict(),
        }


def _settings_for(settings, grid_sizes, n_workers=1):
    if settings is None:
        settings = SolverSettings(n_workers=n_workers)
    if grid_sizes:
        settings = replace(settings, price_table=GridPriceTable.restricted(
            sorted(set(int(s) for s in grid_sizes)), settings.price_table.as_dict()
        ))
    return settings


def run_analysis(numbers, match_threshold=DEFAULT_MATCH_THRESHOLD, grid_sizes=None,
                 validation_mode=MODE_EXHAUSTIVE, n_samples=DEFAULT_SAMPLE_COUNT,
                 seed=None, chance_number=None, complementary_numbers=None,
                 max_draws=MAX_EXHAUSTIVE_DRAWS, n_workers=1, settings=None,
                 cancel_event=None):
    """
    Full analysis of a pool of numbers.

    1. Optimize grids (greedy vs. reference strategies)
    2. Bounds and grading
    3. Coverage recount and draw validation
    4. Payout scenarios

    Exhaustive validation over budget raises ValidationExceededBudget; it is
    never replaced by sampling here.
    """
    if validation_mode not in (MODE_EXHAUSTIVE, MODE_SAMPLED):
        raise InvalidInput(
            f"validation_mode must be '{MODE_EXHAUSTIVE}' or '{MODE_SAMPLED}', "
            f"got {validation_mode!r}"
        )

    target = GuaranteeTarget(match_threshold, DEFAULT_DRAW_SIZE)
    pool = Pool.from_numbers(numbers, draw_size=target.draw_size)
    settings = _settings_for(settings, grid_sizes, n_workers)

    logger.info(f"Analyzing pool {list(pool.numbers)} ({pool.size} numbers), "
                f"guarantee {target.label}")

    # Step 1: optimize
    solution = optimize_grids(pool, target, settings, cancel_event=cancel_event)

    # Step 2: bounds
    bounds = calculate_bounds(pool.size, target.match_threshold, target.draw_size)
    grade = grade_solution(solution, pool.size, target, bounds)
    logger.info(grade.analysis)

    if solution.is_complete and grade.classification == CLASS_IMPOSSIBLE:
        raise InvalidSolution(
            f"Solution claims full coverage with {grade.proposed} simple grids, "
            f"below the certified minimum of {grade.floor}"
        )

    # Step 3: independent checks
    coverage = verify_coverage(solution, pool, target) if solution.grids else {
        'total_subsets': solution.universe_size,
        'covered_subsets': 0,
        'uncovered_subsets': solution.universe_size,
        'uncovered_sample': [],
        'complete': False,
    }
    if solution.is_complete and not coverage['complete']:
        raise InvalidSolution(
            f"Solver reported full coverage but {coverage['uncovered_subsets']} "
            f"subsets are uncovered (e.g. {coverage['uncovered_sample'][:3]})"
        )

    validation = None
    if not solution.grids:
        logger.warning("No grid selected - nothing to validate")
    elif validation_mode == MODE_EXHAUSTIVE:
        validation = validate_exhaustive(
            solution, pool, target,
            complementary_numbers=complementary_numbers,
            chance_number=chance_number,
            max_draws=max_draws,
            n_workers=n_workers,
            cancel_event=cancel_event,
        )
    else:
        validation = validate_sampled(
            solution, target, pool=pool,
            n_samples=n_samples,
            seed=seed,
            chance_number=chance_number,
            cancel_event=cancel_event,
        )

    if validation is not None and validation.mode == MODE_EXHAUSTIVE \
            and not validation.is_guarantee_valid:
        logger.warning(f"Guarantee {target.label} NOT proven: "
                       f"{validation.failures:,} failing draws")

    # Step 4: scenarios
    scenarios = analyze_scenarios(pool.size, solution, target,
                                  price_table=settings.price_table)

    return AnalysisResult(
        pool=pool,
        target=target,
        solution=solution,
        bounds=bounds,
        grade=grade,
        coverage=coverage,
        validation=validation,
        scenarios=scenarios,
    )
