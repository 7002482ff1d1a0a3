"""Durable result of a ladder workout run.

A :class:`SessionRecord` is created once when a run finishes and is never
mutated afterwards, except for the local ``synced`` flag which only the sync
service flips (through :meth:`SessionRecord.with_synced`). Ownership is an
explicit variant: :class:`Guest` for records made before sign-in and
:class:`OwnedBy` once a user identity is known.
"""

from __future__ import annotations

import datetime
import json
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, Field

from workout_configuration import describe_mode


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _to_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _format_ts(value: datetime.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Any) -> datetime.datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.datetime.fromisoformat(text)


@dataclass(frozen=True)
class Guest:
    """Owner of records not yet attributed to a signed-in user."""

    @property
    def user_id(self) -> None:
        return None

    @property
    def is_guest(self) -> bool:
        return True


@dataclass(frozen=True)
class OwnedBy:
    """Owner of records attributed to ``user_id``."""

    user_id: uuid.UUID

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_id", _to_uuid(self.user_id))

    @property
    def is_guest(self) -> bool:
        return False


SessionOwner = Union[Guest, OwnedBy]

GUEST = Guest()


def owner_from_user_id(user_id: uuid.UUID | str | None) -> SessionOwner:
    """Return :data:`GUEST` for ``None`` and :class:`OwnedBy` otherwise."""
    if user_id is None:
        return GUEST
    return OwnedBy(_to_uuid(user_id))


PAYLOAD_FIELDS = (
    "id",
    "user_id",
    "workout_mode",
    "completed",
    "completed_rounds",
    "total_completed_reps",
    "total_workout_time_seconds",
    "progress_percentage",
    "exercise_reps",
    "exercise_timing",
    "workout_started_at",
    "workout_ended_at",
    "created_at",
)


@dataclass(frozen=True)
class SessionRecord:
    """A completed or abandoned workout session."""

    workout_mode: str
    owner: SessionOwner = GUEST
    completed: bool = False
    completed_rounds: int = 0
    total_completed_reps: int = 0
    total_workout_time_seconds: int = 0
    progress_percentage: float = 0.0
    exercise_reps: Mapping[str, int] = field(default_factory=dict)
    exercise_timing: Mapping[str, int] = field(default_factory=dict)
    workout_started_at: datetime.datetime = field(default_factory=utcnow)
    workout_ended_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = field(default_factory=utcnow)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    synced: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _to_uuid(self.id))
        object.__setattr__(self, "exercise_reps", dict(self.exercise_reps))
        object.__setattr__(self, "exercise_timing", dict(self.exercise_timing))
        for name in ("completed_rounds", "total_completed_reps", "total_workout_time_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if not 0.0 <= self.progress_percentage <= 100.0:
            raise ValueError("progress_percentage must be between 0 and 100")

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def user_id(self) -> uuid.UUID | None:
        return self.owner.user_id

    @property
    def needs_sync(self) -> bool:
        return not self.synced and not self.owner.is_guest

    @property
    def status_text(self) -> str:
        return "Completed" if self.completed else "Partial"

    @property
    def formatted_time(self) -> str:
        minutes, seconds = divmod(self.total_workout_time_seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"

    @property
    def title(self) -> str:
        return describe_mode(self.workout_mode)

    @property
    def is_custom(self) -> bool:
        return self.workout_mode.startswith("custom_")

    def with_owner(self, owner: SessionOwner) -> "SessionRecord":
        return replace(self, owner=owner)

    def with_synced(self, synced: bool) -> "SessionRecord":
        return replace(self, synced=synced)

    # ------------------------------------------------------------------
    # Persisted representations
    # ------------------------------------------------------------------

    def to_payload(self) -> dict:
        """Return the remote representation; ``synced`` is local-only."""
        user_id = self.user_id
        return {
            "id": str(self.id),
            "user_id": str(user_id) if user_id is not None else None,
            "workout_mode": self.workout_mode,
            "completed": self.completed,
            "completed_rounds": self.completed_rounds,
            "total_completed_reps": self.total_completed_reps,
            "total_workout_time_seconds": self.total_workout_time_seconds,
            "progress_percentage": self.progress_percentage,
            "exercise_reps": dict(self.exercise_reps),
            "exercise_timing": dict(self.exercise_timing),
            "workout_started_at": _format_ts(self.workout_started_at),
            "workout_ended_at": _format_ts(self.workout_ended_at),
            "created_at": _format_ts(self.created_at),
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any], synced: bool = False) -> "SessionRecord":
        missing = [k for k in PAYLOAD_FIELDS if k not in data and k != "created_at"]
        if missing:
            raise ValueError(f"payload missing fields: {', '.join(missing)}")
        created = _parse_ts(data.get("created_at")) or utcnow()
        return cls(
            id=_to_uuid(data["id"]),
            owner=owner_from_user_id(data["user_id"]),
            workout_mode=data["workout_mode"],
            completed=bool(data["completed"]),
            completed_rounds=int(data["completed_rounds"]),
            total_completed_reps=int(data["total_completed_reps"]),
            total_workout_time_seconds=int(data["total_workout_time_seconds"]),
            progress_percentage=float(data["progress_percentage"]),
            exercise_reps={str(k): int(v) for k, v in (data["exercise_reps"] or {}).items()},
            exercise_timing={str(k): int(v) for k, v in (data["exercise_timing"] or {}).items()},
            workout_started_at=_parse_ts(data["workout_started_at"]),
            workout_ended_at=_parse_ts(data["workout_ended_at"]),
            created_at=created,
            synced=synced,
        )

    def to_row(self) -> tuple:
        """Return the column values for the ``workout_sessions`` table."""
        payload = self.to_payload()
        return (
            payload["id"],
            payload["user_id"],
            self.workout_mode,
            int(self.completed),
            self.completed_rounds,
            self.total_completed_reps,
            self.total_workout_time_seconds,
            self.progress_percentage,
            json.dumps(payload["exercise_reps"], sort_keys=True),
            json.dumps(payload["exercise_timing"], sort_keys=True),
            payload["workout_started_at"],
            payload["workout_ended_at"],
            payload["created_at"],
            int(self.synced),
        )

    @classmethod
    def from_row(cls, row: Iterable) -> "SessionRecord":
        (
            sid,
            user_id,
            mode,
            completed,
            rounds,
            reps,
            seconds,
            progress,
            reps_json,
            timing_json,
            started,
            ended,
            created,
            synced,
        ) = row
        payload = {
            "id": sid,
            "user_id": user_id,
            "workout_mode": mode,
            "completed": completed,
            "completed_rounds": rounds,
            "total_completed_reps": reps,
            "total_workout_time_seconds": seconds,
            "progress_percentage": progress,
            "exercise_reps": json.loads(reps_json) if reps_json else {},
            "exercise_timing": json.loads(timing_json) if timing_json else {},
            "workout_started_at": started,
            "workout_ended_at": ended,
            "created_at": created,
        }
        return cls.from_payload(payload, synced=bool(synced))


class SessionPayload(BaseModel):
    """Validated wire form of a session accepted by the remote API."""

    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    workout_mode: str = Field(min_length=1)
    completed: bool = False
    completed_rounds: int = Field(default=0, ge=0)
    total_completed_reps: int = Field(default=0, ge=0)
    total_workout_time_seconds: int = Field(default=0, ge=0)
    progress_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    exercise_reps: dict[str, int] = Field(default_factory=dict)
    exercise_timing: dict[str, int] = Field(default_factory=dict)
    workout_started_at: datetime.datetime
    workout_ended_at: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None


@dataclass(frozen=True)
class WorkoutStats:
    """Aggregate figures over a set of sessions."""

    total_sessions: int = 0
    completed_sessions: int = 0
    completion_rate: float = 0.0
    total_reps: int = 0
    total_time_seconds: int = 0
    best_time_seconds: int | None = None
    best_reps: int | None = None

    @classmethod
    def from_records(cls, records: Iterable[SessionRecord]) -> "WorkoutStats":
        records = list(records)
        total = len(records)
        done = [r for r in records if r.completed]
        return cls(
            total_sessions=total,
            completed_sessions=len(done),
            completion_rate=len(done) / total * 100 if total else 0.0,
            total_reps=sum(r.total_completed_reps for r in records),
            total_time_seconds=sum(r.total_workout_time_seconds for r in records),
            best_time_seconds=min((r.total_workout_time_seconds for r in done), default=None),
            best_reps=max((r.total_completed_reps for r in records), default=None),
        )

    @property
    def formatted_completion_rate(self) -> str:
        return f"{self.completion_rate:.1f}%"

    @property
    def formatted_total_time(self) -> str:
        hours, rest = divmod(self.total_time_seconds, 3600)
        minutes = rest // 60
        if hours:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"
