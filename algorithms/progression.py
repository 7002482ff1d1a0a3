from enum import Enum
from typing import Iterable, Iterator, Tuple


MAX_ROUND = 10
MIN_ROUND = 1


class ProgressionMode(str, Enum):
    """Round-number sequence shape of a ladder workout."""

    FULL = "full"
    ASCENDING = "ascending"
    DESCENDING = "descending"

    @property
    def display_name(self) -> str:
        return {
            ProgressionMode.FULL: "Full Ladder",
            ProgressionMode.ASCENDING: "Ascending",
            ProgressionMode.DESCENDING: "Descending",
        }[self]

    @property
    def description(self) -> str:
        return {
            ProgressionMode.FULL: f"{MIN_ROUND}→{MAX_ROUND}→{MIN_ROUND} ({self.total_rounds} rounds)",
            ProgressionMode.ASCENDING: f"{MIN_ROUND}→{MAX_ROUND} ({self.total_rounds} rounds)",
            ProgressionMode.DESCENDING: f"{MAX_ROUND}→{MIN_ROUND} ({self.total_rounds} rounds)",
        }[self]

    @property
    def starting_round(self) -> int:
        if self is ProgressionMode.DESCENDING:
            return MAX_ROUND
        return MIN_ROUND

    @property
    def total_rounds(self) -> int:
        if self is ProgressionMode.FULL:
            return 2 * MAX_ROUND - 1
        return MAX_ROUND

    @property
    def round_sum(self) -> int:
        """Sum of every round number visited (55 half ladder, 100 full)."""
        half = MAX_ROUND * (MAX_ROUND + 1) // 2
        if self is ProgressionMode.FULL:
            return half + (MAX_ROUND - 1) * MAX_ROUND // 2
        return half


class ProgressionCalculator:
    """Pure rep and round arithmetic for ladder workouts."""

    @staticmethod
    def reps_for_round(exercise, round_number: int) -> int:
        """Return the reps ``exercise`` calls for at ``round_number``."""
        return exercise.multiplier * round_number

    @staticmethod
    def total_reps(exercises: Iterable, mode: ProgressionMode) -> int:
        """Return the reps needed to finish the whole workout."""
        return sum(e.multiplier for e in exercises) * mode.round_sum

    @staticmethod
    def next_round(
        mode: ProgressionMode, current_round: int, descending: bool = False
    ) -> Tuple[int, bool, bool]:
        """Return ``(round, descending, is_terminal)`` after ``current_round``.

        In full mode the peak round is visited once: finishing round
        ``MAX_ROUND`` while ascending flips the phase and continues at
        ``MAX_ROUND - 1``.
        """
        if mode is ProgressionMode.ASCENDING:
            nxt = current_round + 1
            return nxt, False, nxt > MAX_ROUND
        if mode is ProgressionMode.DESCENDING:
            nxt = current_round - 1
            return nxt, True, nxt < MIN_ROUND
        if not descending:
            if current_round >= MAX_ROUND:
                return MAX_ROUND - 1, True, False
            return current_round + 1, False, False
        nxt = current_round - 1
        return nxt, True, nxt < MIN_ROUND

    @classmethod
    def round_sequence(cls, mode: ProgressionMode) -> Iterator[int]:
        """Yield every round number visited by ``mode`` in order."""
        current = mode.starting_round
        descending = mode is ProgressionMode.DESCENDING
        while True:
            yield current
            current, descending, done = cls.next_round(mode, current, descending)
            if done:
                return

    @staticmethod
    def progress_percentage(
        completed_rounds: int,
        completed_in_round: int,
        exercise_count: int,
        mode: ProgressionMode,
    ) -> float:
        total = mode.total_rounds * exercise_count
        if total <= 0:
            return 0.0
        done = completed_rounds * exercise_count + completed_in_round
        return done / total * 100
