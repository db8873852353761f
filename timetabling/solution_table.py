# timetabling/solution_table.py
"""
Solution table: the bounded population of candidate timetables.

Each slot number maps to a ``Vote`` that carries the solution together with
its accumulated penalty and its fairness. Both scores stay ``None`` until the
evaluator has voted for the solution. The table also remembers the best vote
seen so far (lowest penalty, fairness as tie-break).
"""
import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .config import TABLE_SIZE
from .errors import (
    CandidateAlreadyTracked,
    CandidateNotTracked,
    NoBestYet,
    ShapeMismatch,
    SlotOutOfRange,
)
from .model import Course, ProblemInstance, Solution

logger = logging.getLogger(__name__)


@dataclass
class Vote:
    solution: Solution
    penalty_sum: Optional[int] = None
    fairness: Optional[int] = None

    @property
    def voted(self) -> bool:
        return self.penalty_sum is not None

    @property
    def scored(self) -> bool:
        return self.penalty_sum is not None and self.fairness is not None


def _is_better(candidate: Vote, best: Vote) -> bool:
    if candidate.penalty_sum < best.penalty_sum:
        return True
    return candidate.penalty_sum == best.penalty_sum and candidate.fairness < best.fairness


class SolutionTable:
    def __init__(self, size: int = TABLE_SIZE):
        if size < 1:
            raise ValueError("The solution table needs at least one slot")
        self.size = size
        self._votes: Dict[int, Vote] = {}
        # id(solution) -> slot; a vote keeps its solution alive, so ids stay unique.
        self._slots_by_id: Dict[int, int] = {}
        self._best: Optional[Vote] = None
        # The slot map and the best pointer are guarded separately so that
        # fairness submissions from different slots serialize only on the
        # compare-and-swap of the best vote.
        self._table_lock = threading.RLock()
        self._best_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"SolutionTable(size={self.size}, occupied={self.count()})"

    # --- construction -------------------------------------------------

    @staticmethod
    def create_new_solution(coding, instance: ProblemInstance) -> Solution:
        """
        Validates ``coding`` against the instance and wraps it in a Solution.

        ``coding`` may be a 2-D array or a nested sequence of rows; rows must
        all have ``instance.n_rooms`` cells and there must be exactly
        ``instance.n_periods`` rows.
        """
        n_periods = instance.n_periods
        if len(coding) != n_periods:
            raise ShapeMismatch(
                "Incomplete coding: period-dimension not matching the number of "
                f"periods of the problem instance ({len(coding)} != {n_periods})."
            )
        for period in range(n_periods):
            if len(coding[period]) != instance.n_rooms:
                raise ShapeMismatch(
                    "Incomplete coding: room-dimension not matching the number of "
                    f"rooms of the problem instance in period {period}."
                )
        grid = np.full((n_periods, instance.n_rooms), None, dtype=object)
        for period in range(n_periods):
            for room in range(instance.n_rooms):
                cell = coding[period][room]
                if cell is not None and not isinstance(cell, Course):
                    raise TypeError(f"Cell ({period}, {room}) holds {cell!r}, expected a Course")
                grid[period, room] = cell
        return Solution(coding=grid, instance=instance)

    # --- slot access --------------------------------------------------

    def _check_slot(self, slot: int) -> None:
        if slot < 0 or slot >= self.size:
            raise SlotOutOfRange(slot, self.size)

    def get_solution(self, slot: int) -> Optional[Solution]:
        self._check_slot(slot)
        with self._table_lock:
            vote = self._votes.get(slot)
        return None if vote is None else vote.solution

    def _install(self, slot: int, solution: Solution) -> None:
        old = self._votes.get(slot)
        if old is not None:
            del self._slots_by_id[id(old.solution)]
        self._votes[slot] = Vote(solution)
        self._slots_by_id[id(solution)] = slot

    def _check_untracked(self, solution: Solution, slot: Optional[int] = None) -> None:
        held = self._slots_by_id.get(id(solution))
        if held is not None and held != slot:
            raise CandidateAlreadyTracked(held)

    def put_solution(self, slot: int, solution: Solution) -> None:
        self._check_slot(slot)
        with self._table_lock:
            self._check_untracked(solution, slot)
            self._install(slot, solution)

    def count(self) -> int:
        with self._table_lock:
            return len(self._votes)

    def empty_slots(self) -> List[int]:
        with self._table_lock:
            return [slot for slot in range(self.size) if slot not in self._votes]

    def occupied_slots(self) -> List[int]:
        with self._table_lock:
            return sorted(self._votes)

    def clear(self) -> None:
        with self._table_lock, self._best_lock:
            self._votes.clear()
            self._slots_by_id.clear()
            self._best = None

    # --- voting -------------------------------------------------------

    def _vote_for(self, solution: Solution) -> Vote:
        # Lookup by identity: distinct slots may hold equal grids.
        slot = self._slots_by_id.get(id(solution))
        if slot is None:
            raise CandidateNotTracked()
        return self._votes[slot]

    def add_penalty_to_solution(self, solution: Solution, penalty_points: int) -> None:
        with self._table_lock:
            vote = self._vote_for(solution)
            if vote.penalty_sum is None:
                vote.penalty_sum = penalty_points
            else:
                vote.penalty_sum += penalty_points

    def add_penalty_to_slot(self, slot: int, penalty_points: int) -> None:
        solution = self._require_slot(slot)
        self.add_penalty_to_solution(solution, penalty_points)

    def get_penalty_sum(self, solution: Solution) -> Optional[int]:
        with self._table_lock:
            return self._vote_for(solution).penalty_sum

    def get_penalty_sum_for_slot(self, slot: int) -> Optional[int]:
        return self.get_penalty_sum(self._require_slot(slot))

    def add_fairness_to_solution(self, solution: Solution, fairness: int) -> None:
        with self._table_lock:
            vote = self._vote_for(solution)
            vote.fairness = fairness
            if vote.penalty_sum is None:
                # Nothing was charged: a solution without penalty costs zero.
                vote.penalty_sum = 0
            snapshot = replace(vote)
        self._update_best(snapshot)

    def add_fairness_to_slot(self, slot: int, fairness: int) -> None:
        solution = self._require_slot(slot)
        self.add_fairness_to_solution(solution, fairness)

    def _require_slot(self, slot: int) -> Solution:
        solution = self.get_solution(slot)
        if solution is None:
            raise CandidateNotTracked()
        return solution

    def _update_best(self, current: Vote) -> None:
        with self._best_lock:
            if self._best is None or _is_better(current, self._best):
                logger.debug(
                    "New best solution: penalty=%s fairness=%s",
                    current.penalty_sum,
                    current.fairness,
                )
                self._best = current

    # --- best / worst -------------------------------------------------

    def get_best_solution(self) -> Optional[Solution]:
        with self._best_lock:
            return None if self._best is None else self._best.solution

    def get_best_penalty(self) -> int:
        with self._best_lock:
            if self._best is None:
                raise NoBestYet()
            return self._best.penalty_sum

    def get_best_fairness(self) -> int:
        with self._best_lock:
            if self._best is None:
                raise NoBestYet()
            return self._best.fairness

    def replace_worst_solution(self, solution: Solution) -> int:
        """
        Overwrites the slot with the highest penalty sum and returns its number.

        Unscored slots count as -1, so they are only picked when nothing has
        been scored. The lowest slot wins ties; an empty table writes slot 0.
        """
        with self._table_lock:
            self._check_untracked(solution)
            worst_slot = -1
            worst_penalty = None
            for slot in sorted(self._votes):
                vote = self._votes[slot]
                penalty = -1 if vote.penalty_sum is None else vote.penalty_sum
                if worst_slot == -1 or penalty > worst_penalty:
                    worst_slot = slot
                    worst_penalty = penalty
            if worst_slot == -1:
                worst_slot = 0
            self._install(worst_slot, solution)
        logger.debug("Replaced slot %d (penalty %s)", worst_slot, worst_penalty)
        return worst_slot

    def not_voted_solutions(self) -> List[Solution]:
        with self._table_lock:
            return [
                self._votes[slot].solution
                for slot in sorted(self._votes)
                if not self._votes[slot].voted
            ]

    def scored_votes(self) -> List[Vote]:
        with self._table_lock:
            return [
                replace(self._votes[slot])
                for slot in sorted(self._votes)
                if self._votes[slot].scored
            ]

    def _pick(self, key: Callable[[Vote], Sequence[int]], worst: bool) -> Optional[Vote]:
        votes = self.scored_votes()
        if not votes:
            return None
        return max(votes, key=key) if worst else min(votes, key=key)

    def get_worst_penalty_vote(self) -> Optional[Vote]:
        return self._pick(lambda v: (v.penalty_sum, v.fairness), worst=True)

    def get_fairest_vote(self) -> Optional[Vote]:
        return self._pick(lambda v: (v.fairness, v.penalty_sum), worst=False)

    def get_unfairest_vote(self) -> Optional[Vote]:
        return self._pick(lambda v: (v.fairness, v.penalty_sum), worst=True)
