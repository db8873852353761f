# timetabling/ga.py
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from .config import EvoConfig
from .eliminator import Eliminator
from .evaluation import Evaluator
from .model import ProblemInstance, Solution
from .operators import neighborhood_recombination
from .solution_table import SolutionTable

logger = logging.getLogger(__name__)


class Genetist:
    """Breeds offspring from the table and inserts them over the worst slots."""

    def __init__(self, table: SolutionTable, rng: random.Random, offspring: int = 10, workers: int = 1):
        self.table = table
        self.rng = rng
        self.offspring = offspring
        self.workers = workers
        self.success = 0
        self.failure = 0

    def _choose_parents(self) -> List[Tuple[Solution, Solution, int]]:
        slots = self.table.occupied_slots()
        if len(slots) < 2:
            return []
        jobs = []
        for _ in range(self.offspring):
            s1, s2 = self.rng.sample(slots, 2)
            p1, p2 = self.table.get_solution(s1), self.table.get_solution(s2)
            # Each task gets its own seed; no RNG is shared between workers.
            jobs.append((p1, p2, self.rng.getrandbits(32)))
        return jobs

    @staticmethod
    def _breed(job: Tuple[Solution, Solution, int]) -> Solution:
        p1, p2, seed = job
        return neighborhood_recombination(p1, p2, random.Random(seed))

    def recombine(self) -> int:
        jobs = self._choose_parents()
        if not jobs:
            logger.warning("Not enough solutions to recombine")
            return 0
        if self.workers > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                children = list(pool.map(self._breed, jobs))
        else:
            children = [self._breed(job) for job in jobs]

        # Insertion happens after breeding so no parent is evicted mid-phase.
        for child, (p1, _, _) in zip(children, jobs):
            if (child.coding == p1.coding).all():
                self.failure += 1
            else:
                self.success += 1
            self.table.replace_worst_solution(child)
        return len(children)


class EvolutionEngine:
    """
    Drives the generation cycle: fill, vote, recombine, vote, eliminate.

    ``generator`` is any object with ``fill_solution_table(table, instance)``.
    """

    def __init__(self, instance: ProblemInstance, generator, cfg: EvoConfig,
                 table: Optional[SolutionTable] = None):
        self.instance = instance
        self.generator = generator
        self.cfg = cfg
        self.table = table or SolutionTable(cfg.table_size)
        self.rng = random.Random(cfg.seed)
        self.evaluator = Evaluator(self.table, workers=cfg.workers)
        self.genetist = Genetist(self.table, self.rng, cfg.offspring_per_generation, cfg.workers)
        self.eliminator = Eliminator(self.table, cfg.elimination_count)
        self.history: List[Dict] = []

    def _timed(self, phase: str, fn, *args):
        start = time.perf_counter()
        result = fn(*args)
        logger.info("%s: finished after %.1fms", phase, (time.perf_counter() - start) * 1000)
        return result

    def run_generation(self, gen: int) -> Dict:
        self._timed("GENERATOR", self.generator.fill_solution_table, self.table, self.instance)
        self._timed("EVALUATOR", self.evaluator.evaluate_solutions)
        self._timed("GENETIST", self.genetist.recombine)
        self._timed("EVALUATOR", self.evaluator.evaluate_solutions)
        self._timed("ELIMINATOR", self.eliminator.eliminate_solutions)
        # Clones written by the eliminator are voted before reporting.
        self.evaluator.evaluate_solutions()

        worst = self.table.get_worst_penalty_vote()
        fairest = self.table.get_fairest_vote()
        record = {
            "gen": gen,
            "best_penalty": self.table.get_best_penalty(),
            "best_fairness": self.table.get_best_fairness(),
            "worst_penalty": worst.penalty_sum if worst else None,
            "fairest_fairness": fairest.fairness if fairest else None,
            "population": self.table.count(),
        }
        self.history.append(record)
        return record

    def evolve(self, generations: Optional[int] = None) -> Optional[Solution]:
        generations = self.cfg.generations if generations is None else generations
        for gen in range(generations):
            record = self.run_generation(gen)
            if gen % 5 == 0 or gen == generations - 1:
                logger.info(
                    "Gen %d: best penalty=%s fairness=%s worst=%s",
                    gen,
                    record["best_penalty"],
                    record["best_fairness"],
                    record["worst_penalty"],
                )
        return self.table.get_best_solution()
