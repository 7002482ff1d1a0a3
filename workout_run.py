"""State machine driving a single ladder workout run.

A run moves ``not_started -> active -> {completed, ended_early}``. All
mutating calls (``start``, ``complete_current_set``, ``end_early`` and
``tick``) must come from one execution context; :class:`RunTicker` posts
the once-per-second tick into the running asyncio loop so it is serialized
with user actions handled on that same loop.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from enum import Enum
from typing import Callable, Optional

from algorithms import MAX_ROUND, MIN_ROUND, ProgressionCalculator, ProgressionMode
from exceptions import ConfigurationError, InvalidTransitionError
from exercise_catalog import Exercise
from session_record import GUEST, SessionOwner, SessionRecord, utcnow
from workout_configuration import WorkoutConfiguration

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMPLETED = "completed"
    ENDED_EARLY = "ended_early"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.ENDED_EARLY)


class WorkoutRun:
    """Mutable state of one workout session from start to finish."""

    def __init__(
        self,
        configuration: WorkoutConfiguration,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.configuration = configuration
        self.exercises: list[Exercise] = list(configuration.exercises)
        self.progression_mode: ProgressionMode = configuration.progression_mode
        self._clock = clock

        self.status = RunStatus.NOT_STARTED
        self.current_round = self.progression_mode.starting_round
        self.current_exercise_index = 0
        self.descending = self.progression_mode is ProgressionMode.DESCENDING

        self.completed_rounds = 0
        self.completed_in_round = 0
        self.total_completed_reps = 0
        self.elapsed_seconds = 0
        self._boundary_elapsed = 0
        self.exercise_reps: dict[str, int] = {e.name: 0 for e in self.exercises}
        self.exercise_timing: dict[str, int] = {e.name: 0 for e in self.exercises}

        self.started_at: Optional[datetime.datetime] = None
        self.ended_at: Optional[datetime.datetime] = None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.status is not RunStatus.NOT_STARTED:
            raise InvalidTransitionError(f"cannot start a run that is {self.status.value}")
        if not self.exercises:
            raise ConfigurationError("a workout needs at least one exercise")
        self.current_round = self.progression_mode.starting_round
        self.current_exercise_index = 0
        self.descending = self.progression_mode is ProgressionMode.DESCENDING
        self.completed_rounds = 0
        self.completed_in_round = 0
        self.total_completed_reps = 0
        self.elapsed_seconds = 0
        self._boundary_elapsed = 0
        for name in self.exercise_reps:
            self.exercise_reps[name] = 0
            self.exercise_timing[name] = 0
        self.started_at = self._clock()
        self.status = RunStatus.ACTIVE
        logger.debug("Started %s", self.configuration.mode_string)

    def tick(self, seconds: int = 1) -> None:
        """Advance the elapsed-time counter; ignored unless active."""
        if self.status is not RunStatus.ACTIVE:
            return
        if seconds < 0:
            raise ValueError("seconds must be non-negative")
        self.elapsed_seconds += seconds

    def complete_current_set(self) -> None:
        self._require_active("complete a set")
        exercise = self.exercises[self.current_exercise_index]
        reps = ProgressionCalculator.reps_for_round(exercise, self.current_round)
        self.total_completed_reps += reps
        self.exercise_reps[exercise.name] = self.exercise_reps.get(exercise.name, 0) + reps
        spent = self.elapsed_seconds - self._boundary_elapsed
        self.exercise_timing[exercise.name] = self.exercise_timing.get(exercise.name, 0) + spent
        self._boundary_elapsed = self.elapsed_seconds

        self.current_exercise_index += 1
        self.completed_in_round += 1
        if self.current_exercise_index >= len(self.exercises):
            self._complete_round()

    def end_early(self) -> None:
        self._require_active("end")
        self._finish(RunStatus.ENDED_EARLY)

    def _complete_round(self) -> None:
        self.completed_rounds += 1
        self.current_exercise_index = 0
        self.completed_in_round = 0
        nxt, descending, done = ProgressionCalculator.next_round(
            self.progression_mode, self.current_round, self.descending
        )
        self.descending = descending
        if done:
            self._finish(RunStatus.COMPLETED)
        else:
            self.current_round = nxt

    def _finish(self, status: RunStatus) -> None:
        self.status = status
        self.ended_at = self._clock()
        logger.debug(
            "Run %s %s after %d rounds", self.configuration.mode_string, status.value, self.completed_rounds
        )

    def _require_active(self, action: str) -> None:
        if self.status is not RunStatus.ACTIVE:
            raise InvalidTransitionError(f"cannot {action} while {self.status.value}")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status is RunStatus.ACTIVE

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    @property
    def current_exercise(self) -> Exercise | None:
        if self.status.is_terminal or self.current_exercise_index >= len(self.exercises):
            return None
        return self.exercises[self.current_exercise_index]

    @property
    def current_reps(self) -> int:
        exercise = self.current_exercise
        if exercise is None:
            return 0
        return ProgressionCalculator.reps_for_round(exercise, self.current_round)

    @property
    def is_last_round(self) -> bool:
        if self.progression_mode is ProgressionMode.ASCENDING:
            return self.current_round >= MAX_ROUND
        if self.progression_mode is ProgressionMode.DESCENDING:
            return self.current_round <= MIN_ROUND
        return self.descending and self.current_round <= MIN_ROUND

    @property
    def is_last_exercise_in_round(self) -> bool:
        return self.current_exercise_index >= len(self.exercises) - 1

    @property
    def next_exercise(self) -> Exercise | None:
        if self.status.is_terminal:
            return None
        nxt = self.current_exercise_index + 1
        if nxt < len(self.exercises):
            return self.exercises[nxt]
        if not self.is_last_round:
            return self.exercises[0]
        return None

    @property
    def next_reps(self) -> int:
        exercise = self.next_exercise
        if exercise is None:
            return 0
        round_number = self.current_round
        if self.is_last_exercise_in_round:
            round_number, _, _ = ProgressionCalculator.next_round(
                self.progression_mode, self.current_round, self.descending
            )
        return ProgressionCalculator.reps_for_round(exercise, round_number)

    @property
    def total_reps(self) -> int:
        return self.configuration.total_reps

    @property
    def total_rounds(self) -> int:
        return self.progression_mode.total_rounds

    @property
    def progress_percentage(self) -> float:
        return ProgressionCalculator.progress_percentage(
            self.completed_rounds,
            self.completed_in_round,
            len(self.exercises),
            self.progression_mode,
        )

    @property
    def formatted_time(self) -> str:
        minutes, seconds = divmod(self.elapsed_seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def exercise_breakdown(self) -> list[tuple[str, int, int]]:
        """Return ``(name, reps, seconds)`` for every configured exercise."""
        return [
            (e.name, self.exercise_reps.get(e.name, 0), self.exercise_timing.get(e.name, 0))
            for e in self.exercises
        ]

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def to_session_record(
        self, owner: SessionOwner = GUEST, session_id: uuid.UUID | None = None
    ) -> SessionRecord:
        """Snapshot a finished run; callers emit once and keep the result."""
        if not self.status.is_terminal:
            raise InvalidTransitionError(f"cannot record a run that is {self.status.value}")
        now = self._clock()
        return SessionRecord(
            id=session_id or uuid.uuid4(),
            owner=owner,
            workout_mode=self.configuration.mode_string,
            completed=self.status is RunStatus.COMPLETED,
            completed_rounds=self.completed_rounds,
            total_completed_reps=self.total_completed_reps,
            total_workout_time_seconds=self.elapsed_seconds,
            progress_percentage=min(self.progress_percentage, 100.0),
            exercise_reps=dict(self.exercise_reps),
            exercise_timing=dict(self.exercise_timing),
            workout_started_at=self.started_at or now,
            workout_ended_at=self.ended_at or now,
            created_at=now,
        )


class RunTicker:
    """Periodic asyncio task feeding elapsed-time ticks into a run."""

    def __init__(self, run: WorkoutRun, interval: float = 1.0, step: int = 1) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.run = run
        self.interval = interval
        self.step = step
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        while not self.run.is_finished:
            await asyncio.sleep(self.interval)
            self.run.tick(self.step)
