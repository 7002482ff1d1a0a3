from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class ExerciseCategory(str, Enum):
    """Muscle group tag used to organise exercises."""

    UPPER = "upper"
    LOWER = "lower"
    CORE = "core"

    @property
    def display_name(self) -> str:
        return {
            ExerciseCategory.UPPER: "Upper Body",
            ExerciseCategory.LOWER: "Lower Body",
            ExerciseCategory.CORE: "Core",
        }[self]


_SEPARATORS = re.compile(r"[\s\-]+")


def sanitize_name(name: str) -> str:
    """Return ``name`` lower-cased with whitespace and hyphen runs as ``_``."""
    return _SEPARATORS.sub("_", name.strip().lower()).strip("_")


@dataclass(frozen=True)
class Exercise:
    """A single exercise with its rep multiplier."""

    name: str
    multiplier: int
    category: ExerciseCategory
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("exercise name must not be empty")
        if self.multiplier < 1:
            raise ValueError("multiplier must be a positive integer")

    def reps_for_round(self, round_number: int) -> int:
        return self.multiplier * round_number

    @property
    def sanitized_name(self) -> str:
        return sanitize_name(self.name)


DEFAULT_EXERCISES: tuple[Exercise, ...] = (
    Exercise("Pull-ups", 1, ExerciseCategory.UPPER, "Grip bar with palms facing away, pull chin above bar"),
    Exercise("Standing Weight Press", 1, ExerciseCategory.UPPER, "Press weight overhead from shoulder level"),
    Exercise("Dips", 2, ExerciseCategory.UPPER, "Lower body between parallel bars, push back up"),
    Exercise("Push-ups", 3, ExerciseCategory.UPPER, "Standard push-up with full range of motion"),
    Exercise("Leg Lifts", 3, ExerciseCategory.CORE, "Hang from bar, lift legs to parallel"),
    Exercise("Sit-ups", 4, ExerciseCategory.CORE, "Full sit-up with controlled movement"),
    Exercise("Air Squats", 5, ExerciseCategory.LOWER, "Bodyweight squat to parallel or below"),
)

LADDER_EXERCISE_NAMES: tuple[str, ...] = (
    "Pull-ups",
    "Dips",
    "Push-ups",
    "Sit-ups",
    "Air Squats",
)


def lookup(name: str) -> Exercise:
    """Return the catalog exercise called ``name`` (case-insensitive)."""
    key = sanitize_name(name)
    for exercise in DEFAULT_EXERCISES:
        if exercise.sanitized_name == key:
            return exercise
    raise KeyError(name)


def ladder_defaults() -> list[Exercise]:
    """Return the five exercises of the standard ladder workout."""
    return [lookup(n) for n in LADDER_EXERCISE_NAMES]


def excluding(exercises: Iterable[Exercise], names: Iterable[str]) -> list[Exercise]:
    skip = {sanitize_name(n) for n in names}
    return [e for e in exercises if e.sanitized_name not in skip]


def total_multiplier(exercises: Iterable[Exercise]) -> int:
    return sum(e.multiplier for e in exercises)


def by_category(category: ExerciseCategory) -> list[Exercise]:
    return [e for e in DEFAULT_EXERCISES if e.category == category]
