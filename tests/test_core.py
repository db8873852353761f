import itertools
import random
import unittest
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from unittest import mock

from timetabling.errors import (
    CandidateAlreadyTracked,
    CandidateNotTracked,
    NoBestYet,
    ShapeMismatch,
    SlotOutOfRange,
)
from timetabling.evaluation import (
    Evaluator,
    compactness_cost,
    evaluate,
    fairness,
    min_working_days_cost,
    room_capacity_cost,
)
from timetabling.model import Course, Curriculum, ProblemInstance, Room, empty_coding
from timetabling.operators import neighborhood_recombination
from timetabling.solution_table import SolutionTable


def build_instance(days=2, periods_per_day=4):
    c1 = Course("c1", "t1", lectures=2, min_working_days=3, students=35, curricula=frozenset({"q1"}))
    c2 = Course("c2", "t2", lectures=2, min_working_days=1, students=20, curricula=frozenset({"q1", "q2"}))
    c3 = Course("c3", "t3", lectures=1, min_working_days=1, students=10, curricula=frozenset({"q2"}))
    c4 = Course("c4", "t1", lectures=1, min_working_days=1, students=15, curricula=frozenset({"q1"}))
    q1 = Curriculum("q1", frozenset({c1, c2, c4}))
    q2 = Curriculum("q2", frozenset({c2, c3}))
    return ProblemInstance(
        name="toy",
        days=days,
        periods_per_day=periods_per_day,
        rooms=(Room("A", 30), Room("B", 50)),
        courses=(c1, c2, c3, c4),
        curricula=(q1, q2),
    )


def single_course_instance(days=1, periods_per_day=5, min_days=1, students=10):
    x = Course("x", "tx", min_working_days=min_days, students=students, curricula=frozenset({"qx"}))
    qx = Curriculum("qx", frozenset({x}))
    return ProblemInstance(
        name="single",
        days=days,
        periods_per_day=periods_per_day,
        rooms=(Room("A", 30), Room("B", 30)),
        courses=(x,),
        curricula=(qx,),
    )


def course_counts(solution):
    return Counter(c.id for c in solution.coding.flat if c is not None)


class SolutionTableTests(unittest.TestCase):
    def setUp(self):
        self.instance = build_instance()
        self.table = SolutionTable(size=5)

    def new_solution(self):
        return self.table.create_new_solution(empty_coding(self.instance), self.instance)

    def test_create_validates_shape(self):
        rows = [[None, None] for _ in range(8)]
        solution = self.table.create_new_solution(rows, self.instance)
        self.assertEqual(solution.shape, (8, 2))
        with self.assertRaises(ShapeMismatch):
            self.table.create_new_solution(rows[:7], self.instance)
        ragged = [[None, None] for _ in range(8)]
        ragged[3] = [None]
        with self.assertRaises(ShapeMismatch):
            self.table.create_new_solution(ragged, self.instance)

    def test_slot_bounds(self):
        for slot in (-1, 5, 100):
            with self.assertRaises(SlotOutOfRange):
                self.table.put_solution(slot, self.new_solution())
            with self.assertRaises(SlotOutOfRange):
                self.table.get_solution(slot)
        for slot in range(5):
            solution = self.new_solution()
            self.table.put_solution(slot, solution)
            self.assertIs(self.table.get_solution(slot), solution)
        self.assertEqual(self.table.count(), 5)

    def test_slot_addressed_scores_check_bounds(self):
        self.table.put_solution(0, self.new_solution())
        for slot in (-1, self.table.size):
            with self.assertRaises(SlotOutOfRange):
                self.table.add_penalty_to_slot(slot, 1)
            with self.assertRaises(SlotOutOfRange):
                self.table.add_fairness_to_slot(slot, 1)
            with self.assertRaises(SlotOutOfRange):
                self.table.get_penalty_sum_for_slot(slot)
        with self.assertRaises(CandidateNotTracked):
            self.table.get_penalty_sum_for_slot(1)
        self.table.add_penalty_to_slot(0, 4)
        self.assertEqual(self.table.get_penalty_sum_for_slot(0), 4)

    def test_one_solution_per_slot(self):
        solution = self.new_solution()
        self.table.put_solution(0, solution)
        self.table.put_solution(0, solution)
        with self.assertRaises(CandidateAlreadyTracked) as ctx:
            self.table.put_solution(1, solution)
        self.assertEqual(ctx.exception.slot, 0)
        with self.assertRaises(CandidateAlreadyTracked):
            self.table.replace_worst_solution(solution)
        self.assertEqual(self.table.count(), 1)
        self.table.put_solution(1, solution.clone())
        self.assertEqual(self.table.count(), 2)

    def test_overwritten_solution_is_no_longer_tracked(self):
        old, new = self.new_solution(), self.new_solution()
        self.table.put_solution(0, old)
        self.table.put_solution(0, new)
        with self.assertRaises(CandidateNotTracked):
            self.table.add_penalty_to_solution(old, 1)
        self.table.put_solution(1, old)
        self.assertIs(self.table.get_solution(1), old)
    def test_penalty_is_plain_running_sum(self):
        solution = self.new_solution()
        self.table.put_solution(0, solution)
        self.table.add_penalty_to_solution(solution, 0)
        self.assertEqual(self.table.get_penalty_sum(solution), 0)
        self.table.add_penalty_to_solution(solution, 3)
        self.table.add_penalty_to_slot(0, 4)
        self.assertEqual(self.table.get_penalty_sum(solution), 7)

    def test_fairness_overwrites(self):
        solution = self.new_solution()
        self.table.put_solution(0, solution)
        self.table.add_penalty_to_solution(solution, 1)
        self.table.add_fairness_to_solution(solution, 5)
        self.table.add_fairness_to_solution(solution, 2)
        self.assertEqual(self.table.scored_votes()[0].fairness, 2)
        self.assertEqual(self.table.get_best_fairness(), 2)

    def test_lookup_is_by_identity(self):
        first = self.new_solution()
        second = first.clone()
        self.table.put_solution(0, first)
        self.table.put_solution(1, second)
        self.table.add_penalty_to_solution(second, 9)
        self.assertIsNone(self.table.get_penalty_sum(first))
        self.assertEqual(self.table.get_penalty_sum(second), 9)
        self.assertEqual(self.table.not_voted_solutions(), [first])
        with self.assertRaises(CandidateNotTracked):
            self.table.add_penalty_to_solution(first.clone(), 1)

    def test_no_best_yet(self):
        self.assertIsNone(self.table.get_best_solution())
        with self.assertRaises(NoBestYet):
            self.table.get_best_penalty()
        with self.assertRaises(NoBestYet):
            self.table.get_best_fairness()

    def test_best_for_every_submission_order(self):
        scores = [(10, 3), (10, 1), (12, 0), (8, 7)]
        for order in itertools.permutations(range(len(scores))):
            table = SolutionTable(size=5)
            solutions = []
            for slot in range(len(scores)):
                solution = self.new_solution()
                table.put_solution(slot, solution)
                solutions.append(solution)
            for idx in order:
                penalty, fair = scores[idx]
                table.add_penalty_to_solution(solutions[idx], penalty)
                table.add_fairness_to_solution(solutions[idx], fair)
            self.assertIs(table.get_best_solution(), solutions[3])
            self.assertEqual(table.get_best_penalty(), 8)
            self.assertEqual(table.get_best_fairness(), 7)

    def test_concurrent_fairness_keeps_the_best(self):
        table = SolutionTable(size=200)
        rng = random.Random(5)
        scores = [(rng.randrange(50), rng.randrange(20)) for _ in range(table.size)]
        solutions = []
        for slot in range(table.size):
            solution = self.new_solution()
            table.put_solution(slot, solution)
            solutions.append(solution)

        def submit(slot):
            penalty, fair = scores[slot]
            table.add_penalty_to_solution(solutions[slot], penalty)
            table.add_fairness_to_solution(solutions[slot], fair)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(submit, range(table.size)))

        best_penalty, best_fairness = min(scores)
        self.assertEqual(table.get_best_penalty(), best_penalty)
        self.assertEqual(table.get_best_fairness(), best_fairness)
        self.assertEqual(scores[solutions.index(table.get_best_solution())], (best_penalty, best_fairness))
        self.assertEqual(table.not_voted_solutions(), [])

    def test_fairness_breaks_penalty_ties(self):
        a, b = self.new_solution(), self.new_solution()
        self.table.put_solution(0, a)
        self.table.put_solution(1, b)
        self.table.add_penalty_to_solution(a, 10)
        self.table.add_fairness_to_solution(a, 3)
        self.table.add_penalty_to_solution(b, 10)
        self.table.add_fairness_to_solution(b, 1)
        self.assertIs(self.table.get_best_solution(), b)

    def test_replace_worst_on_empty_table_uses_slot_zero(self):
        solution = self.new_solution()
        self.assertEqual(self.table.replace_worst_solution(solution), 0)
        self.assertIs(self.table.get_solution(0), solution)

    def test_replace_worst_first_slot_wins_ties(self):
        solutions = [self.new_solution() for _ in range(3)]
        for slot, (solution, penalty) in enumerate(zip(solutions, (5, 9, 9))):
            self.table.put_solution(slot, solution)
            self.table.add_penalty_to_solution(solution, penalty)
            self.table.add_fairness_to_solution(solution, 0)
        newcomer = self.new_solution()
        self.assertEqual(self.table.replace_worst_solution(newcomer), 1)
        self.assertEqual(self.table.not_voted_solutions(), [newcomer])
        self.assertEqual(self.table.get_worst_penalty_vote().penalty_sum, 9)

    def test_reporting_votes_and_clear(self):
        for slot, (penalty, fair) in enumerate([(4, 9), (6, 1), (5, 5)]):
            solution = self.new_solution()
            self.table.put_solution(slot, solution)
            self.table.add_penalty_to_slot(slot, penalty)
            self.table.add_fairness_to_slot(slot, fair)
        self.assertEqual(self.table.get_fairest_vote().penalty_sum, 6)
        self.assertEqual(self.table.get_unfairest_vote().penalty_sum, 4)
        self.assertEqual(self.table.empty_slots(), [3, 4])
        self.table.clear()
        self.assertEqual(self.table.count(), 0)
        self.assertIsNone(self.table.get_best_solution())


class EvaluationTests(unittest.TestCase):
    def test_fairness_examples(self):
        self.assertEqual(fairness([10, 20, 30]), 0)
        self.assertEqual(fairness([0, 10, 50]), 10)
        self.assertEqual(fairness([7]), 0)
        self.assertEqual(fairness([]), 0)

    def test_room_capacity_counted_once(self):
        instance = build_instance()
        c1 = instance.course_by_id("c1")
        coding = empty_coding(instance)
        coding[0, 0] = c1  # 35 students in room A (30)
        q1 = instance.curricula[0]
        self.assertEqual(room_capacity_cost(coding, instance, q1), 5)
        coding[0, 0], coding[0, 1] = None, c1  # room B holds 50
        self.assertEqual(room_capacity_cost(coding, instance, q1), 0)

    def test_min_working_days(self):
        instance = single_course_instance(days=3, periods_per_day=2, min_days=3)
        x = instance.courses[0]
        coding = empty_coding(instance)
        coding[0, 0] = x
        coding[1, 1] = x  # same day, counted once
        coding[2, 0] = x
        self.assertEqual(min_working_days_cost(coding, instance, instance.curricula[0]), 5)

    def test_compactness_and_room_stability(self):
        instance = single_course_instance(periods_per_day=5)
        x = instance.courses[0]
        qx = instance.curricula[0]
        coding = empty_coding(instance)
        for period in (0, 1, 3):
            coding[period, 0] = x
        self.assertEqual(compactness_cost(coding, instance, qx), 2)
        coding[3, 0], coding[3, 1] = None, x
        self.assertEqual(compactness_cost(coding, instance, qx), 3)

    def test_compactness_resets_each_day(self):
        instance = single_course_instance(days=2, periods_per_day=4)
        x = instance.courses[0]
        coding = empty_coding(instance)
        coding[3, 0] = x  # last period of day 0
        coding[4, 1] = x  # first period of day 1
        self.assertEqual(compactness_cost(coding, instance, instance.curricula[0]), 0)

    def test_evaluator_votes_every_pending_solution(self):
        instance = build_instance()
        table = SolutionTable(size=4)
        c1, c2, c3, c4 = instance.courses
        rows = [[None, None] for _ in range(instance.n_periods)]
        rows[0] = [c1, None]
        rows[4] = [c1, None]
        rows[1] = [None, c2]
        rows[5] = [None, c2]
        rows[2] = [c3, None]
        rows[6] = [c4, None]
        solutions = []
        for slot in range(3):
            solution = table.create_new_solution(rows, instance)
            table.put_solution(slot, solution)
            solutions.append(solution)

        self.assertEqual(Evaluator(table, workers=2).evaluate_solutions(), 3)
        self.assertEqual(table.not_voted_solutions(), [])
        expected = evaluate(solutions[0])
        self.assertEqual(table.get_penalty_sum(solutions[2]), expected.penalty)
        self.assertEqual(table.get_best_penalty(), expected.penalty)
        self.assertEqual(table.get_best_fairness(), expected.fairness)
        self.assertEqual(expected.penalty, sum(expected.curriculum_penalties))

    def test_failed_evaluation_leaves_solution_unvoted(self):
        instance = build_instance()
        table = SolutionTable(size=2)
        solution = table.create_new_solution(empty_coding(instance), instance)
        table.put_solution(0, solution)
        calls = []

        def failing_penalty(coding, inst, curriculum):
            calls.append(curriculum.id)
            if len(calls) == 2:
                raise RuntimeError("scoring failed")
            return 3

        with mock.patch("timetabling.evaluation.curriculum_penalty", side_effect=failing_penalty):
            with self.assertRaises(RuntimeError):
                Evaluator(table).evaluate_solutions()
        self.assertEqual(len(calls), 2)
        self.assertIsNone(table.get_penalty_sum(solution))
        self.assertEqual(table.not_voted_solutions(), [solution])

        Evaluator(table).evaluate_solutions()
        self.assertEqual(table.get_penalty_sum(solution), evaluate(solution).penalty)

    def test_single_curriculum_is_fair(self):
        instance = single_course_instance(min_days=2)
        table = SolutionTable(size=2)
        coding = empty_coding(instance)
        coding[0, 0] = instance.courses[0]
        solution = table.create_new_solution(coding, instance)
        table.put_solution(0, solution)
        Evaluator(table).evaluate_solutions()
        self.assertEqual(table.get_best_penalty(), 5)
        self.assertEqual(table.get_best_fairness(), 0)


class RecombinationTests(unittest.TestCase):
    def setUp(self):
        self.instance = build_instance()
        self.c1, self.c2, self.c3, self.c4 = self.instance.courses

    def solution(self, cells):
        coding = empty_coding(self.instance)
        for (p, r), course in cells.items():
            coding[p, r] = course
        return SolutionTable.create_new_solution(coding, self.instance)

    def test_shape_mismatch(self):
        other = SolutionTable.create_new_solution(
            empty_coding(build_instance(days=1)), build_instance(days=1)
        )
        with self.assertRaises(ShapeMismatch):
            neighborhood_recombination(self.solution({}), other, random.Random(0))

    def test_single_occurrence_is_moved(self):
        p1 = self.solution({(0, 0): self.c3})
        p2 = self.solution({(2, 1): self.c3})
        child = neighborhood_recombination(p1, p2, random.Random(1))
        self.assertIsNone(child.coding[0, 0])
        self.assertEqual(child.coding[2, 1], self.c3)
        self.assertEqual(p1.coding[0, 0], self.c3)

    def test_gap_without_occurrence_stays_empty(self):
        p1 = self.solution({(0, 0): self.c3})
        p2 = self.solution({(2, 1): self.c1})
        child = neighborhood_recombination(p1, p2, random.Random(1))
        self.assertIsNone(child.coding[2, 1])
        self.assertEqual(course_counts(child), course_counts(p1))

    def test_single_clash_leaves_gap(self):
        # c2 shares q1 with c1 but has another teacher.
        p1 = self.solution({(0, 0): self.c2, (3, 0): self.c1})
        p2 = self.solution({(0, 1): self.c1})
        child = neighborhood_recombination(p1, p2, random.Random(1))
        self.assertIsNone(child.coding[0, 1])
        self.assertEqual(child.coding[3, 0], self.c1)

    def test_double_clash_swaps_with_twin(self):
        # c4 has c1's teacher and exactly c1's curricula.
        p1 = self.solution({(0, 0): self.c4, (2, 0): self.c1})
        p2 = self.solution({(0, 1): self.c1})
        child = neighborhood_recombination(p1, p2, random.Random(1))
        self.assertIsNone(child.coding[0, 0])
        self.assertEqual(child.coding[0, 1], self.c1)
        self.assertEqual(child.coding[2, 0], self.c4)
        self.assertEqual(course_counts(child), course_counts(p1))

    def test_double_clash_without_twin_leaves_gap(self):
        # Same teacher and a shared curriculum, but the curricula sets differ.
        c5 = Course("c5", "t1", curricula=frozenset({"q1", "q2"}))
        p1 = self.solution({(0, 0): c5, (3, 0): self.c1})
        p2 = self.solution({(0, 1): self.c1})
        child = neighborhood_recombination(p1, p2, random.Random(1))
        self.assertIsNone(child.coding[0, 1])
        self.assertEqual(child.coding[0, 0], c5)
        self.assertEqual(child.coding[3, 0], self.c1)
        self.assertEqual(course_counts(child), course_counts(p1))

    def test_teacher_only_clash_leaves_gap(self):
        # c6 has c1's teacher but no curriculum in common.
        c6 = Course("c6", "t1", curricula=frozenset({"q2"}))
        p1 = self.solution({(0, 0): c6, (3, 0): self.c1})
        p2 = self.solution({(0, 1): self.c1})
        child = neighborhood_recombination(p1, p2, random.Random(1))
        self.assertIsNone(child.coding[0, 1])
        self.assertEqual(child.coding[0, 0], c6)
        self.assertEqual(child.coding[3, 0], self.c1)

    def test_matches_courses_by_id(self):
        twin_object = Course("c3", "t3", students=10, curricula=frozenset({"q2"}))
        p1 = self.solution({(0, 0): self.c3})
        p2 = self.solution({(1, 1): twin_object})
        child = neighborhood_recombination(p1, p2, random.Random(1))
        self.assertIsNone(child.coding[0, 0])
        self.assertEqual(child.coding[1, 1].id, "c3")

    def test_reproducible_and_conserving(self):
        courses = list(self.instance.courses)
        for seed in range(20):
            rng = random.Random(seed)
            cells = [(p, r) for p in range(self.instance.n_periods) for r in range(2)]
            p1 = self.solution({cell: rng.choice(courses) for cell in rng.sample(cells, 6)})
            p2 = self.solution({cell: rng.choice(courses) for cell in rng.sample(cells, 6)})
            before = p1.coding.copy()
            child_a = neighborhood_recombination(p1, p2, random.Random(seed))
            child_b = neighborhood_recombination(p1, p2, random.Random(seed))
            self.assertTrue((child_a.coding == child_b.coding).all())
            self.assertEqual(course_counts(child_a), course_counts(p1))
            self.assertTrue((p1.coding == before).all())


if __name__ == "__main__":
    unittest.main()
