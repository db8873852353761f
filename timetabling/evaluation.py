# timetabling/evaluation.py
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .model import Course, Curriculum, ProblemInstance, Solution
from .solution_table import SolutionTable

logger = logging.getLogger(__name__)

MIN_WORKING_DAYS_WEIGHT = 5
COMPACTNESS_WEIGHT = 2
ROOM_STABILITY_WEIGHT = 1


@dataclass
class EvaluationResult:
    penalty: int
    fairness: int
    curriculum_penalties: List[int]


def _first_in_period(
    coding: np.ndarray, period: int, curriculum: Curriculum
) -> Tuple[Optional[int], Optional[Course]]:
    # Hard constraints allow at most one course of a curriculum per period.
    for room, course in enumerate(coding[period]):
        if course is not None and course in curriculum:
            return room, course
    return None, None


def room_capacity_cost(coding: np.ndarray, instance: ProblemInstance, curriculum: Curriculum) -> int:
    """Each student above the room capacity counts as one point."""
    cost = 0
    for period in range(instance.n_periods):
        room, course = _first_in_period(coding, period, curriculum)
        if course is None:
            continue
        capacity = instance.room_by_index(room).capacity
        cost += max(0, course.students - capacity)
    return cost


def working_days(coding: np.ndarray, instance: ProblemInstance, course: Course) -> int:
    days = 0
    for day in range(instance.days):
        start = day * instance.periods_per_day
        block = coding[start:start + instance.periods_per_day]
        if any(c is not None and c.id == course.id for c in block.flat):
            days += 1
    return days


def min_working_days_cost(coding: np.ndarray, instance: ProblemInstance, curriculum: Curriculum) -> int:
    """Each day below the minimum counts as five points."""
    cost = 0
    for course in curriculum.courses:
        actual = working_days(coding, instance, course)
        if actual < course.min_working_days:
            cost += MIN_WORKING_DAYS_WEIGHT * (course.min_working_days - actual)
    return cost


def compactness_cost(coding: np.ndarray, instance: ProblemInstance, curriculum: Curriculum) -> int:
    """
    Curriculum compactness and room stability, folded day by day.

    Every occurrence after the first one of a day costs two points when it
    does not follow the previous occurrence directly, and one point when it
    sits in a different room.
    """
    cost = 0
    for day in range(instance.days):
        prev_period = prev_room = None
        first = day * instance.periods_per_day
        for period in range(first, first + instance.periods_per_day):
            room, course = _first_in_period(coding, period, curriculum)
            if course is None:
                continue
            if prev_period is not None:
                if prev_period != period - 1:
                    cost += COMPACTNESS_WEIGHT
                if room != prev_room:
                    cost += ROOM_STABILITY_WEIGHT
            prev_period, prev_room = period, room
    return cost


def curriculum_penalty(coding: np.ndarray, instance: ProblemInstance, curriculum: Curriculum) -> int:
    return (
        room_capacity_cost(coding, instance, curriculum)
        + min_working_days_cost(coding, instance, curriculum)
        + compactness_cost(coding, instance, curriculum)
    )


def fairness(penalties: List[int]) -> int:
    """
    Symmetry of the spread around the (integer) average penalty.

    [10, 20, 30] -> 0, [0, 10, 50] -> 10. Lower is fairer.
    """
    if not penalties:
        return 0
    max_p = max(penalties)
    min_p = min(penalties)
    avg_p = sum(penalties) // len(penalties)
    return abs((max_p - avg_p) - (avg_p - min_p))


def evaluate(solution: Solution) -> EvaluationResult:
    """Scores one solution without touching any solution table."""
    instance = solution.instance
    penalties = [
        curriculum_penalty(solution.coding, instance, curriculum)
        for curriculum in instance.curricula
    ]
    return EvaluationResult(
        penalty=sum(penalties),
        fairness=fairness(penalties),
        curriculum_penalties=penalties,
    )


class Evaluator:
    """Votes for every solution of the table that has not been scored yet."""

    def __init__(self, table: SolutionTable, workers: int = 1):
        self.table = table
        self.workers = workers

    def _vote(self, solution: Solution) -> None:
        # Score completely before touching the table: a failure must leave
        # the solution unvoted.
        result = evaluate(solution)
        for cost in result.curriculum_penalties:
            self.table.add_penalty_to_solution(solution, cost)
        self.table.add_fairness_to_solution(solution, result.fairness)

    def evaluate_solutions(self) -> int:
        pending = self.table.not_voted_solutions()
        if not pending:
            return 0
        # Every worker owns one solution (and so one vote) at a time.
        if self.workers > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                list(pool.map(self._vote, pending))
        else:
            for solution in pending:
                self._vote(solution)
        logger.info("Evaluated %d solutions", len(pending))
        return len(pending)
