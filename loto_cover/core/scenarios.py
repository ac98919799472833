"""
Payout scenarios per correspondence level.

For c = 1..5 winning numbers inside the pool, describe what the full wheel
of C(N, 5) simple grids would hold (how many grids match j numbers) and
what it pays at the fixed minimum gains and at the average gains, then the
worst case for the recommended solution. Nothing here estimates how likely
a level is.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

import pandas as pd

from loto_cover.config import (
    DEFAULT_GRID_COSTS, RANK_TABLE, SIMPLE_GRID_SIZE, logger
)
from loto_cover.core.combinatorics import binomial
from loto_cover.core.errors import InvalidInput
from loto_cover.core.records import GridPriceTable, GuaranteeTarget


def rank_for(matches, has_chance, payout_table=RANK_TABLE):
    for rank, (rank_matches, rank_chance, _, _) in payout_table.items():
        if rank_matches == matches and rank_chance == has_chance:
            return rank
    return 0


def guaranteed_gain(rank, payout_table=RANK_TABLE):
    """Fixed minimum gain of a rank; the average when none is published"""
    if rank == 0:
        return 0.0
    _, _, guaranteed, average = payout_table[rank]
    return float(guaranteed if guaranteed is not None else average)


def average_gain(rank, payout_table=RANK_TABLE):
    if rank == 0:
        return 0.0
    return float(payout_table[rank][3])


def match_distribution(pool_size, correspondences, draw_size=SIMPLE_GRID_SIZE):
    """
    {j: number of simple grids of the full wheel with exactly j matches}

    C(c, j) * C(N - c, D - j) for j = 0..c.
    """
    return {
        j: binomial(correspondences, j) * binomial(pool_size - correspondences, draw_size - j)
        for j in range(correspondences + 1)
    }


@dataclass(frozen=True)
class ScenarioDetail:
    correspondences: int
    distribution: Tuple[Tuple[int, int], ...]
    winning_grids: int
    max_possible_rank: int
    guaranteed_payout: float
    average_payout: float
    worst_case_payout: float
    net_worst_case: Optional[float]
    explanation: str

    @property
    def worth_playing(self):
        return self.net_worst_case is not None and self.net_worst_case >= 0

    def to_dict(self):
        return {
            'correspondences': self.correspondences,
            'distribution': {j: n for j, n in self.distribution},
            'winning_grids': self.winning_grids,
            'max_possible_rank': self.max_possible_rank,
            'guaranteed_payout': self.guaranteed_payout,
            'average_payout': self.average_payout,
            'worst_case_payout': self.worst_case_payout,
            'net_worst_case': self.net_worst_case,
            'worth_playing': self.worth_playing,
            'explanation': self.explanation,
        }


@dataclass(frozen=True)
class ScenarioAnalysis:
    pool_size: int
    match_threshold: int
    wheel_grid_count: int
    wheel_cost: float
    solution_cost: Optional[float]
    solution_complete: bool
    scenarios: Tuple[ScenarioDetail, ...]
    recommendation: str

    def scenario(self, correspondences):
        for s in self.scenarios:
            if s.correspondences == correspondences:
                return s
        raise KeyError(correspondences)

    def to_frame(self):
        """One row per correspondence level"""
        return pd.DataFrame([
            {
                'correspondences': f"{s.correspondences}/{SIMPLE_GRID_SIZE}",
                'winning_grids': s.winning_grids,
                'best_rank': s.max_possible_rank,
                'guaranteed': round(s.guaranteed_payout, 2),
                'average': round(s.average_payout, 2),
                'worst_case': round(s.worst_case_payout, 2),
                'net_worst_case': (round(s.net_worst_case, 2)
                                   if s.net_worst_case is not None else None),
            }
            for s in self.scenarios
        ])

    def to_dict(self):
        return {
            'pool_size': self.pool_size,
            'match_threshold': self.match_threshold,
            'wheel_grid_count': self.wheel_grid_count,
            'wheel_cost': self.wheel_cost,
            'solution_cost': self.solution_cost,
            'solution_complete': self.solution_complete,
            'scenarios': [s.to_dict() for s in self.scenarios],
            'recommendation': self.recommendation,
        }


def _explain(c, distribution, winning, m, worst, complete):
    parts = [f"{n} grids with {j} good" for j, n in sorted(distribution.items(), reverse=True)
             if n > 0 and j >= 2]
    text = ", ".join(parts) if parts else "no grid with 2+ good numbers"
    if complete and c >= m:
        text += f". Your grids guarantee {m}+ matches: at least {worst:.2f}"
    elif c < m:
        text += f". Below the {m}-number guarantee: no minimum gain"
    return f"{c}/{SIMPLE_GRID_SIZE}: {text}"


def _recommendation(scenarios, solution_cost, complete, m):
    if solution_cost is None:
        return "No solution given: payouts are those of the full wheel"
    if not complete:
        return "Incomplete cover: no correspondence level has a guaranteed gain"
    paying = [s.correspondences for s in scenarios if s.worth_playing]
    if paying:
        return (f"Worst case covers the {solution_cost:.2f} stake from "
                f"{min(paying)}/{SIMPLE_GRID_SIZE} correspondences")
    return (f"Worst case never covers the {solution_cost:.2f} stake: "
            f"the {m}-number guarantee only limits losses")


def analyze_scenarios(pool_size, solution=None, target=None, payout_table=RANK_TABLE,
                      price_table=None):
    """
    Payouts for every correspondence level 1..5.

    Payout figures are for the full wheel; the worst case and its net
    value are for `solution` when one is given. A complete solution with
    c >= m correspondences holds at least one grid with m matches, so its
    worst case is the gain of that rank.
    """
    if target is None:
        target = GuaranteeTarget()
    if price_table is None:
        price_table = GridPriceTable.from_mapping()
    if pool_size < target.draw_size:
        raise InvalidInput(
            f"Pool needs at least {target.draw_size} numbers, got {pool_size}"
        )

    m = target.match_threshold
    wheel_grids = binomial(pool_size, target.draw_size)
    # A menu without simple grids still prices the wheel at the base price
    if price_table.has_size(target.draw_size):
        simple_price = price_table.cost(target.draw_size)
    else:
        simple_price = DEFAULT_GRID_COSTS[target.draw_size]
    wheel_cost = round(wheel_grids * simple_price, 2)

    complete = solution is not None and solution.is_complete
    solution_cost = solution.total_cost if solution is not None else None
    guarantee_gain = guaranteed_gain(rank_for(m, False, payout_table), payout_table)

    scenarios = []
    for c in range(1, target.draw_size + 1):
        distribution = match_distribution(pool_size, c, target.draw_size)

        guaranteed = 0.0
        average = 0.0
        winning = 0
        for j, n_grids in distribution.items():
            rank = rank_for(j, False, payout_table)
            if rank:
                winning += n_grids
            guaranteed += n_grids * guaranteed_gain(rank, payout_table)
            average += n_grids * average_gain(rank, payout_table)

        worst = guarantee_gain if complete and c >= m else 0.0
        net = round(worst - solution_cost, 2) if solution_cost is not None else None

        scenarios.append(ScenarioDetail(
            correspondences=c,
            distribution=tuple(sorted(distribution.items())),
            winning_grids=winning,
            max_possible_rank=rank_for(c, True, payout_table),
            guaranteed_payout=round(guaranteed, 2),
            average_payout=round(average, 2),
            worst_case_payout=worst,
            net_worst_case=net,
            explanation=_explain(c, distribution, winning, m, worst, complete),
        ))

    analysis = ScenarioAnalysis(
        pool_size=pool_size,
        match_threshold=m,
        wheel_grid_count=wheel_grids,
        wheel_cost=wheel_cost,
        solution_cost=solution_cost,
        solution_complete=complete,
        scenarios=tuple(scenarios),
        recommendation=_recommendation(scenarios, solution_cost, complete, m),
    )
    logger.debug(f"Scenarios for {pool_size} numbers: {analysis.recommendation}")
    return analysis
