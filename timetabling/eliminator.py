# timetabling/eliminator.py
import logging

from .solution_table import SolutionTable

logger = logging.getLogger(__name__)


class Eliminator:
    """
    Drops the weakest solutions of a generation.

    The table never deletes a slot, so the ``count`` worst slots are
    overwritten with clones of the best solution; they get voted again and
    act as extra parents of the best structure in the next recombination.
    """

    def __init__(self, table: SolutionTable, count: int = 2):
        self.table = table
        self.count = count

    def eliminate_solutions(self) -> int:
        best = self.table.get_best_solution()
        if best is None or self.count <= 0:
            return 0
        # Leave at least one scored solution untouched.
        n = min(self.count, max(0, len(self.table.scored_votes()) - 1))
        for _ in range(n):
            slot = self.table.replace_worst_solution(best.clone())
            logger.debug("Eliminated slot %d", slot)
        return n
