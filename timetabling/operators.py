# timetabling/operators.py
import random
from typing import List, NamedTuple, Optional

from .errors import ShapeMismatch
from .model import Course, Solution


class CoursePosition(NamedTuple):
    period: int
    room: int


def positions_of_course(solution: Solution, course: Course) -> List[CoursePosition]:
    """All cells of ``solution`` holding ``course``, in period/room order."""
    coding = solution.coding
    n_periods, n_rooms = coding.shape
    return [
        CoursePosition(p, r)
        for p in range(n_periods)
        for r in range(n_rooms)
        if coding[p, r] is not None and coding[p, r].id == course.id
    ]


def pick_position(positions: List[CoursePosition], rng: random.Random) -> Optional[CoursePosition]:
    if not positions:
        return None
    if len(positions) == 1:
        return positions[0]
    return positions[rng.randrange(len(positions))]


def exists_same_curriculum_in_period(solution: Solution, course: Course, period: int) -> bool:
    for other in solution.coding[period]:
        if other is not None and other.curricula & course.curricula:
            return True
    return False


def exists_same_teacher_in_period(solution: Solution, course: Course, period: int) -> bool:
    for other in solution.coding[period]:
        if other is not None and other.teacher == course.teacher:
            return True
    return False


def find_twin_course(solution: Solution, course: Course, period: int) -> Optional[CoursePosition]:
    """Position of a course in ``period`` with the same teacher and exactly the same curricula."""
    for room, other in enumerate(solution.coding[period]):
        if other is None or other.teacher != course.teacher:
            continue
        if other.curricula == course.curricula:
            return CoursePosition(period, room)
    return None


def neighborhood_recombination(
    parent1: Solution, parent2: Solution, rng: Optional[random.Random] = None
) -> Solution:
    """
    Neighborhood crossover: the child starts as a clone of ``parent1`` and its
    gaps are filled from ``parent2`` by moving one existing occurrence of the
    same course, so no course is ever invented.

    - no curriculum and no teacher clash in the period: move a random
      occurrence of the course into the gap;
    - both clashes: the clashing twin (same teacher, same curricula) moves
      into the cell of a random occurrence of the course, its own cell is
      cleared and the course fills the gap;
    - only one kind of clash: the gap stays empty.
    """
    if parent1.shape != parent2.shape:
        raise ShapeMismatch(
            f"Cannot recombine codings of shape {parent1.shape} and {parent2.shape}."
        )
    rng = rng or random.Random()
    child = parent1.clone()
    coding = child.coding
    donor = parent2.coding
    n_periods, n_rooms = coding.shape

    for p in range(n_periods):
        for r in range(n_rooms):
            course = donor[p, r]
            if coding[p, r] is not None or course is None:
                continue

            same_curriculum = exists_same_curriculum_in_period(child, course, p)
            same_teacher = exists_same_teacher_in_period(child, course, p)

            if not same_curriculum and not same_teacher:
                source = pick_position(positions_of_course(child, course), rng)
                if source is not None:
                    coding[source.period, source.room] = None
                    coding[p, r] = course
            elif same_curriculum and same_teacher:
                twin = find_twin_course(child, course, p)
                if twin is None:
                    continue
                source = pick_position(positions_of_course(child, course), rng)
                if source is None:
                    continue
                coding[source.period, source.room] = coding[twin.period, twin.room]
                coding[p, r] = course
                coding[twin.period, twin.room] = None
    return child
