"""
Analyze a pool of Loto numbers: guaranteed grids, bounds, validation, payouts

Usage:
    python analyze_pool.py 1,2,3,4,5,6,7,8,9,10
    python analyze_pool.py 1,2,3,4,5,6,7,8,9,10 --m 3 --sizes 5,7 --sampled 20000 --seed 42
"""
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent))

import pandas as pd

from loto_cover.core.bounds import explain_bounds
from loto_cover.core.errors import LotoCoverError, ResourceLimitExceeded
from loto_cover.core.records import MODE_EXHAUSTIVE, MODE_SAMPLED
from loto_cover.core.validator import format_validation_report
from loto_cover.pipelines.analyze_pool import run_analysis
from loto_cover.config import DEFAULT_SAMPLE_COUNT


def parse_numbers(text):
    return [int(x.strip()) for x in text.split(",") if x.strip()]


def parse_args(argv):
    if len(argv) < 2 or argv[1] in ('-h', '--help'):
        return None

    options = {
        'numbers': parse_numbers(argv[1]),
        'match_threshold': 3,
        'grid_sizes': None,
        'validation_mode': MODE_EXHAUSTIVE,
        'n_samples': DEFAULT_SAMPLE_COUNT,
        'seed': None,
    }

    args = argv[2:]
    i = 0
    while i < len(args):
        flag = args[i]
        value = args[i + 1] if i + 1 < len(args) else None
        if value is None:
            raise ValueError(f"Missing value for {flag}")
        if flag == '--m':
            options['match_threshold'] = int(value)
        elif flag == '--sizes':
            options['grid_sizes'] = parse_numbers(value)
        elif flag == '--sampled':
            options['validation_mode'] = MODE_SAMPLED
            options['n_samples'] = int(value)
        elif flag == '--seed':
            options['seed'] = int(value)
        else:
            raise ValueError(f"Unknown option {flag}")
        i += 2

    return options


def print_grids(solution):
    print("\n" + "=" * 70)
    print(f"🎟️  GRIDS ({solution.strategy}, {solution.status})")
    print("=" * 70)
    for i, grid in enumerate(solution.grids, 1):
        grid_str = ' '.join(f'{n:2d}' for n in grid.numbers)
        print(f"  Grid {i:3d}: [{grid_str}]  size {grid.size}  {grid.cost:8.2f} EUR")
    print(f"\n  Total: {solution.grid_count} grids, {solution.total_cost:.2f} EUR")
    print(f"  Coverage: {solution.covered_count:,}/{solution.universe_size:,} "
          f"subsets ({solution.coverage_pct:.1f}%)")
    if solution.abort_reason:
        print(f"  ⚠️  Aborted: {solution.abort_reason}")

    if solution.comparison:
        comparison = pd.DataFrame([c.to_dict() for c in solution.comparison])
        print("\n  Strategy comparison:")
        print(comparison.to_string(index=False))


def main():
    try:
        options = parse_args(sys.argv)
    except ValueError as e:
        print(f"❌ {e}")
        print(__doc__)
        sys.exit(2)

    if options is None:
        print(__doc__)
        sys.exit(0)

    print("=" * 70)
    print("🎰 LOTO COVER - GUARANTEED GRID ANALYSIS")
    print("=" * 70)

    try:
        result = run_analysis(**options)
    except ResourceLimitExceeded as e:
        print(f"\n❌ {e}")
        sys.exit(1)
    except LotoCoverError as e:
        print(f"\n❌ {type(e).__name__}: {e}")
        sys.exit(1)

    print_grids(result.solution)

    print("\n" + "=" * 70)
    print("📐 BOUNDS")
    print("=" * 70)
    print(explain_bounds(result.bounds))
    print(f"\n  {result.grade.analysis}")

    if result.validation is not None:
        print("\n" + "=" * 70)
        print("🔍 VALIDATION")
        print("=" * 70)
        print(format_validation_report(result.validation))
        print("\n" + result.validation.grid_stats_frame().head(10).to_string(index=False))

    print("\n" + "=" * 70)
    print("💰 SCENARIOS")
    print("=" * 70)
    print(result.scenarios.to_frame().to_string(index=False))
    print(f"\n  {result.scenarios.recommendation}")
    print("=" * 70)


if __name__ == "__main__":
    main()
