# timetabling/ctt_reader.py
"""
Reader and writer for the ITC-2007 curriculum-based timetabling formats.

``.ctt`` files describe a problem instance; ``.sol`` files list one lecture
per line as ``<course> <room> <day> <period>``.
"""
import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Set, Tuple

import pandas as pd

from .errors import ShapeMismatch
from .model import Course, Curriculum, ProblemInstance, Room, Solution, empty_coding
from .solution_table import SolutionTable

logger = logging.getLogger(__name__)

_SECTIONS = {
    "COURSES:": "COURSES",
    "ROOMS:": "ROOMS",
    "CURRICULA:": "CURRICULA",
    "UNAVAILABILITY_CONSTRAINTS:": "CONSTRAINTS",
}


def read_ctt_file(filename) -> ProblemInstance:
    with open(filename, "r", encoding="utf-8") as file:
        data = file.readlines()

    header: Dict[str, str] = {}
    raw_courses: List[Tuple[str, str, int, int, int]] = []
    rooms: List[Room] = []
    raw_curricula: List[Tuple[str, List[str]]] = []
    skipped_constraints = 0
    reading_section = None

    for line in data:
        line = line.strip()
        if not line:
            continue
        if line == "END.":
            break
        if line in _SECTIONS:
            reading_section = _SECTIONS[line]
            continue

        if reading_section is None:
            key, _, value = line.partition(":")
            header[key.strip()] = value.strip()
            continue

        parts = line.split()
        if reading_section == "COURSES":
            if len(parts) != 5:
                raise ValueError(f"Malformed course line: {line!r}")
            course_id, teacher, lectures, min_days, students = parts
            raw_courses.append((course_id, teacher, int(lectures), int(min_days), int(students)))
        elif reading_section == "ROOMS":
            if len(parts) != 2:
                raise ValueError(f"Malformed room line: {line!r}")
            rooms.append(Room(id=parts[0], capacity=int(parts[1])))
        elif reading_section == "CURRICULA":
            if len(parts) < 2:
                raise ValueError(f"Malformed curriculum line: {line!r}")
            # parts[1] is the number of member courses
            raw_curricula.append((parts[0], parts[2:]))
        else:
            skipped_constraints += 1

    if skipped_constraints:
        logger.debug("Ignored %d unavailability constraints", skipped_constraints)

    memberships: Dict[str, Set[str]] = defaultdict(set)
    for curriculum_id, members in raw_curricula:
        for course_id in members:
            memberships[course_id].add(curriculum_id)

    courses = tuple(
        Course(
            id=course_id,
            teacher=teacher,
            lectures=lectures,
            min_working_days=min_days,
            students=students,
            curricula=frozenset(memberships.get(course_id, ())),
        )
        for course_id, teacher, lectures, min_days, students in raw_courses
    )
    by_id = {c.id: c for c in courses}

    curricula = []
    for curriculum_id, members in raw_curricula:
        unknown = [m for m in members if m not in by_id]
        if unknown:
            raise ValueError(f"Curriculum {curriculum_id} references unknown courses {unknown}")
        curricula.append(Curriculum(id=curriculum_id, courses=frozenset(by_id[m] for m in members)))

    try:
        days = int(header["Days"])
        periods_per_day = int(header["Periods_per_day"])
    except KeyError as exc:
        raise ValueError(f"{filename}: missing header field {exc}") from exc

    return ProblemInstance(
        name=header.get("Name", Path(filename).stem),
        days=days,
        periods_per_day=periods_per_day,
        rooms=tuple(rooms),
        courses=courses,
        curricula=tuple(curricula),
    )


def read_solution_file(filename, instance: ProblemInstance) -> Solution:
    """Builds a validated Solution from an ITC-2007 ``.sol`` file."""
    coding = empty_coding(instance)
    courses = instance.courses_by_id()
    with open(filename, "r", encoding="utf-8") as file:
        for number, line in enumerate(file, start=1):
            parts = line.split()
            if not parts:
                continue
            if len(parts) != 4:
                raise ValueError(f"{filename}:{number}: expected 4 fields, got {line!r}")
            course_id, room_id, day, period = parts[0], parts[1], int(parts[2]), int(parts[3])
            if not (0 <= day < instance.days and 0 <= period < instance.periods_per_day):
                raise ShapeMismatch(f"{filename}:{number}: day/period outside the instance")
            try:
                room = instance.room_index(room_id)
                course = courses[course_id]
            except KeyError as exc:
                raise ValueError(f"{filename}:{number}: unknown id {exc}") from exc
            cell = day * instance.periods_per_day + period
            if coding[cell, room] is not None:
                raise ValueError(
                    f"{filename}:{number}: room {room_id} already holds "
                    f"{coding[cell, room].id} on day {day}, period {period}"
                )
            coding[cell, room] = course
    return SolutionTable.create_new_solution(coding, instance)


def solution_to_dataframe(solution: Solution) -> pd.DataFrame:
    instance = solution.instance
    rows = []
    n_periods, n_rooms = solution.shape
    for p in range(n_periods):
        for r in range(n_rooms):
            course = solution.coding[p, r]
            if course is None:
                continue
            rows.append(
                {
                    "course": course.id,
                    "room": instance.room_by_index(r).id,
                    "day": p // instance.periods_per_day,
                    "period": p % instance.periods_per_day,
                }
            )
    return pd.DataFrame(rows, columns=["course", "room", "day", "period"])


def write_solution_file(solution: Solution, filename) -> None:
    solution_to_dataframe(solution).to_csv(filename, sep=" ", header=False, index=False)
