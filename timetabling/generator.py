# timetabling/generator.py
import logging
from concurrent.futures import ThreadPoolExecutor
from itertools import cycle
from pathlib import Path
from typing import List, Optional

from .ctt_reader import read_solution_file
from .model import ProblemInstance, Solution
from .solution_table import SolutionTable

logger = logging.getLogger(__name__)


class SolutionFileGenerator:
    """
    Seeds the solution table with existing feasible timetables.

    Every ``*.sol`` file in ``directory`` is read once (on a worker pool);
    afterwards empty slots are filled with clones of those timetables in
    round-robin order.
    """

    def __init__(self, directory, workers: int = 1, pattern: str = "*.sol"):
        self.directory = Path(directory)
        self.workers = workers
        self.pattern = pattern
        self._seeds: Optional[List[Solution]] = None
        self.success = 0

    def _load(self, instance: ProblemInstance) -> List[Solution]:
        files = sorted(self.directory.glob(self.pattern))
        if not files:
            raise FileNotFoundError(f"No {self.pattern} files in {self.directory}")
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            seeds = list(pool.map(lambda f: read_solution_file(f, instance), files))
        logger.info("Loaded %d initial solutions from %s", len(seeds), self.directory)
        return seeds

    def fill_solution_table(self, table: SolutionTable, instance: ProblemInstance) -> int:
        if self._seeds is None:
            self._seeds = self._load(instance)
        slots = table.empty_slots()
        for slot, seed in zip(slots, cycle(self._seeds)):
            table.put_solution(slot, seed.clone())
        self.success += len(slots)
        return len(slots)
