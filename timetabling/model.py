# timetabling/model.py
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Tuple

import numpy as np

RoomIdx = int


@dataclass(frozen=True)
class Course:
    # Equality and hash only look at the id: clones and re-read instances
    # may hold distinct objects for the same course.
    id: str
    teacher: str = field(compare=False)
    lectures: int = field(default=1, compare=False)
    min_working_days: int = field(default=1, compare=False)
    students: int = field(default=0, compare=False)
    curricula: FrozenSet[str] = field(default_factory=frozenset, compare=False)


@dataclass(frozen=True)
class Curriculum:
    id: str
    courses: FrozenSet[Course] = frozenset()

    def __contains__(self, course) -> bool:
        return course is not None and course in self.courses


@dataclass(frozen=True)
class Room:
    id: str
    capacity: int


@dataclass(frozen=True)
class ProblemInstance:
    name: str
    days: int
    periods_per_day: int
    rooms: Tuple[Room, ...]
    courses: Tuple[Course, ...] = ()
    curricula: Tuple[Curriculum, ...] = ()

    @property
    def n_periods(self) -> int:
        return self.days * self.periods_per_day

    @property
    def n_rooms(self) -> int:
        return len(self.rooms)

    @property
    def n_curricula(self) -> int:
        return len(self.curricula)

    def room_by_index(self, idx: RoomIdx) -> Room:
        return self.rooms[idx]

    def room_index(self, room_id: str) -> RoomIdx:
        for idx, room in enumerate(self.rooms):
            if room.id == room_id:
                return idx
        raise KeyError(room_id)

    def course_by_id(self, course_id: str) -> Course:
        for course in self.courses:
            if course.id == course_id:
                return course
        raise KeyError(course_id)

    def courses_by_id(self) -> Dict[str, Course]:
        return {c.id: c for c in self.courses}


@dataclass(eq=False)
class Solution:
    """
    One candidate timetable: ``coding[period, room]`` holds a Course or None.

    Solutions compare by identity; two slots may hold equal grids and the
    solution table must still tell them apart. Build them through
    ``SolutionTable.create_new_solution`` so the shape is validated.
    """
    coding: np.ndarray
    instance: ProblemInstance

    @property
    def shape(self) -> Tuple[int, int]:
        return self.coding.shape

    def clone(self) -> "Solution":
        # Object arrays copy references: the grid is new, the courses are shared.
        return Solution(coding=self.coding.copy(), instance=self.instance)

    def occurrences(self, course: Course) -> int:
        return sum(1 for c in self.coding.flat if c is not None and c.id == course.id)


def empty_coding(instance: ProblemInstance) -> np.ndarray:
    return np.full((instance.n_periods, instance.n_rooms), None, dtype=object)

