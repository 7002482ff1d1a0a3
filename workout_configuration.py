from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from algorithms import ProgressionCalculator, ProgressionMode
from exceptions import ConfigurationError
from exercise_catalog import Exercise, excluding, ladder_defaults, lookup, sanitize_name

CUSTOM_PREFIX = "custom_"


class PresetWorkout(str, Enum):
    """Fixed ladder workouts offered out of the box."""

    FULL = "full"
    ASCENDING = "ascending"
    DESCENDING = "descending"
    FULL_NO_DIPS = "full_no_dips"
    ASCENDING_NO_DIPS = "ascending_no_dips"
    DESCENDING_NO_DIPS = "descending_no_dips"
    FULL_NO_SQUATS = "full_no_squats"
    ASCENDING_NO_SQUATS = "ascending_no_squats"
    DESCENDING_NO_SQUATS = "descending_no_squats"
    FULL_NO_DIPS_NO_SQUATS = "full_no_dips_no_squats"
    ASCENDING_NO_DIPS_NO_SQUATS = "ascending_no_dips_no_squats"
    DESCENDING_NO_DIPS_NO_SQUATS = "descending_no_dips_no_squats"

    @property
    def progression_mode(self) -> ProgressionMode:
        return ProgressionMode(self.value.split("_", 1)[0])

    @property
    def excluded(self) -> list[str]:
        names = []
        if "no_dips" in self.value:
            names.append("Dips")
        if "no_squats" in self.value:
            names.append("Air Squats")
        return names

    @property
    def exercises(self) -> list[Exercise]:
        return excluding(ladder_defaults(), self.excluded)

    @property
    def display_name(self) -> str:
        base = self.progression_mode.display_name
        excluded = self.excluded
        if not excluded:
            return base
        if len(excluded) == 2:
            return f"{base} (No Dips/Squats)"
        return f"{base} (No {excluded[0].split()[-1]})"

    @property
    def total_reps(self) -> int:
        return ProgressionCalculator.total_reps(self.exercises, self.progression_mode)

    @classmethod
    def grouped(cls) -> list[tuple[str, list["PresetWorkout"]]]:
        """Return presets grouped by exercise variation."""
        return [
            ("Full Set (5 Exercises)", [cls.FULL, cls.ASCENDING, cls.DESCENDING]),
            (
                "No Dips (4 Exercises)",
                [cls.FULL_NO_DIPS, cls.ASCENDING_NO_DIPS, cls.DESCENDING_NO_DIPS],
            ),
            (
                "No Squats (4 Exercises)",
                [cls.FULL_NO_SQUATS, cls.ASCENDING_NO_SQUATS, cls.DESCENDING_NO_SQUATS],
            ),
            (
                "No Dips & No Squats (3 Exercises)",
                [
                    cls.FULL_NO_DIPS_NO_SQUATS,
                    cls.ASCENDING_NO_DIPS_NO_SQUATS,
                    cls.DESCENDING_NO_DIPS_NO_SQUATS,
                ],
            ),
        ]


class WorkoutConfiguration:
    """Either a preset workout or a custom exercise list with a mode."""

    def __init__(
        self,
        exercises: Sequence[Exercise],
        progression_mode: ProgressionMode,
        *,
        preset: PresetWorkout | None = None,
        name: str | None = None,
    ) -> None:
        if not exercises:
            raise ConfigurationError("a workout needs at least one exercise")
        self.exercises: list[Exercise] = list(exercises)
        self.progression_mode = ProgressionMode(progression_mode)
        self.preset = preset
        self.name = name

    @classmethod
    def from_preset(cls, preset: PresetWorkout | str) -> "WorkoutConfiguration":
        preset = PresetWorkout(preset)
        return cls(preset.exercises, preset.progression_mode, preset=preset)

    @classmethod
    def custom(
        cls,
        exercises: Iterable[Exercise],
        progression_mode: ProgressionMode | str,
        name: str | None = None,
    ) -> "WorkoutConfiguration":
        return cls(list(exercises), ProgressionMode(progression_mode), name=name)

    @property
    def is_custom(self) -> bool:
        return self.preset is None

    @property
    def total_reps(self) -> int:
        return ProgressionCalculator.total_reps(self.exercises, self.progression_mode)

    @property
    def mode_string(self) -> str:
        """Grouping key used for personal-best lookups."""
        if self.preset is not None:
            return self.preset.value
        names = "_".join(e.sanitized_name for e in self.exercises)
        return f"{CUSTOM_PREFIX}{names}_{self.progression_mode.value}"

    @property
    def display_name(self) -> str:
        if self.preset is not None:
            return self.preset.display_name
        if self.name:
            return self.name
        names = ", ".join(e.name for e in self.exercises)
        return f"{names} - {self.progression_mode.display_name}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WorkoutConfiguration):
            return NotImplemented
        return self.mode_string == other.mode_string

    def __hash__(self) -> int:
        return hash(self.mode_string)

    def __repr__(self) -> str:
        return f"WorkoutConfiguration({self.mode_string!r})"


def normalize_mode_string(mode: str) -> str:
    return sanitize_name(mode)


def describe_mode(mode: str) -> str:
    """Return a human-readable title for a stored mode string."""
    mode = normalize_mode_string(mode)
    if mode.startswith(CUSTOM_PREFIX):
        parts = mode[len(CUSTOM_PREFIX):].split("_")
        try:
            progression = ProgressionMode(parts[-1])
        except ValueError:
            return mode
        names = " ".join(parts[:-1]).title()
        return f"{names} - {progression.display_name}"
    try:
        return PresetWorkout(mode).display_name
    except ValueError:
        return mode.replace("_", " ").title()


@dataclass
class WorkoutTemplate:
    """A saved custom workout configuration."""

    name: str
    exercise_names: list[str]
    progression_mode: ProgressionMode = ProgressionMode.FULL
    is_favorite: bool = False
    id: int | None = None
    created_at: str | None = None

    @property
    def exercises(self) -> list[Exercise]:
        result = []
        for name in self.exercise_names:
            try:
                result.append(lookup(name))
            except KeyError:
                continue
        return result

    def configuration(self) -> WorkoutConfiguration:
        return WorkoutConfiguration.custom(self.exercises, self.progression_mode, self.name)

    @property
    def total_reps(self) -> int:
        return ProgressionCalculator.total_reps(self.exercises, self.progression_mode)
