# timetabling/errors.py


class TimetablingError(Exception):
    """Base class for every error raised by the optimization core."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ShapeMismatch(TimetablingError):
    """A coding does not match the instance (or the other parent) in shape."""


class SlotOutOfRange(TimetablingError):
    """Raised when a slot number falls outside [0, table size)."""

    def __init__(self, slot: int, size: int):
        self.slot = slot
        self.size = size
        super().__init__(
            f"Solution table numbers only range from 0 to {size - 1} (got {slot})."
        )


class CandidateNotTracked(TimetablingError):
    """The solution table has no vote for the given solution."""

    def __init__(self):
        super().__init__("Solution not found in solution table.")


class NoBestYet(TimetablingError):
    def __init__(self):
        super().__init__("No best solution available yet.")


class CandidateAlreadyTracked(TimetablingError):
    """The same solution object may only live in one slot at a time."""

    def __init__(self, slot: int):
        self.slot = slot
        super().__init__(f"Solution is already held by slot {slot}; put a clone instead.")
