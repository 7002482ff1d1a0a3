import argparse
import asyncio
import csv
import io
import json
import logging
import shutil
from typing import Optional

from algorithms import ProgressionCalculator
from db import AsyncSessionRepository, SessionRepository
from history_service import HistoryService
from remote_store import RestSessionStore
from settings_schema import SettingsSchema, load_settings
from sync_service import SyncResult, SyncService
from workout_configuration import PresetWorkout

EXPORT_FIELDS = [
    "id",
    "user_id",
    "workout_mode",
    "completed",
    "completed_rounds",
    "total_completed_reps",
    "total_workout_time_seconds",
    "progress_percentage",
    "workout_started_at",
    "workout_ended_at",
    "created_at",
]


def plan_table(preset: str) -> str:
    """Return the round-by-round rep table for ``preset``."""
    workout = PresetWorkout(preset)
    names = [e.name for e in workout.exercises]
    lines = ["Round  " + "  ".join(names)]
    for rnd in ProgressionCalculator.round_sequence(workout.progression_mode):
        reps = [
            str(ProgressionCalculator.reps_for_round(e, rnd)).rjust(len(e.name))
            for e in workout.exercises
        ]
        lines.append(f"{rnd:>5}  " + "  ".join(reps))
    lines.append(f"Total reps: {workout.total_reps}")
    return "\n".join(lines)


def export_sessions(db_path: str, fmt: str, user_id: Optional[str] = None) -> str:
    repo = SessionRepository(db_path)
    records = repo.fetch_for_user(user_id) if user_id else repo.fetch_all_sessions()
    if fmt == "json":
        return json.dumps([r.to_payload() for r in records], indent=2)
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=EXPORT_FIELDS + ["exercise_reps", "exercise_timing"])
    writer.writeheader()
    for record in records:
        payload = record.to_payload()
        row = {k: payload[k] for k in EXPORT_FIELDS}
        row["exercise_reps"] = json.dumps(payload["exercise_reps"], sort_keys=True)
        row["exercise_timing"] = json.dumps(payload["exercise_timing"], sort_keys=True)
        writer.writerow(row)
    return out.getvalue()


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def list_sessions(db_path: str, user_id: Optional[str] = None) -> list[str]:
    repo = SessionRepository(db_path)
    lines = []
    for r in repo.fetch_for_user(user_id):
        flag = "" if r.synced else " (not backed up)"
        lines.append(
            f"{r.created_at:%Y-%m-%d %H:%M}  {r.title:<40} {r.status_text:<9} "
            f"{r.total_completed_reps:>5} reps  {r.formatted_time}{flag}"
        )
    return lines


def stats_summary(db_path: str, user_id: Optional[str] = None) -> dict:
    records = SessionRepository(db_path).fetch_for_user(user_id)
    stats = HistoryService.stats(records)
    return {
        "total_sessions": stats.total_sessions,
        "completed_sessions": stats.completed_sessions,
        "completion_rate": stats.formatted_completion_rate,
        "total_reps": stats.total_reps,
        "total_time": stats.formatted_total_time,
        "best_time_seconds": stats.best_time_seconds,
        "best_reps": stats.best_reps,
    }


def build_sync_service(settings: SettingsSchema) -> SyncService:
    remote = None
    if settings.remote_url:
        remote = RestSessionStore(settings.remote_url, api_key=settings.remote_api_key)
    return SyncService(
        AsyncSessionRepository(settings.db_path),
        remote,
        max_concurrency=settings.upload_concurrency,
    )


def _report(result: SyncResult) -> None:
    print(
        f"reassigned={result.reassigned} uploaded={len(result.succeeded)} "
        f"downloaded={len(result.downloaded)} failed={len(result.failed)}"
    )
    for key, error in result.failed.items():
        print(f"  {key}: {error}")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Ladder workout utility commands")
    parser.add_argument("--config", default="ladder.yaml")
    sub = parser.add_subparsers(dest="cmd", required=True)

    plan = sub.add_parser("plan")
    plan.add_argument("preset", choices=[p.value for p in PresetWorkout])

    lst = sub.add_parser("list")
    lst.add_argument("--user", default=None)

    st = sub.add_parser("stats")
    st.add_argument("--user", default=None)

    sync = sub.add_parser("sync")
    sync.add_argument("--user", required=True)

    sub.add_parser("upload")

    exp = sub.add_parser("export")
    exp.add_argument("--fmt", choices=["csv", "json"], default="json")
    exp.add_argument("--user", default=None)
    exp.add_argument("--out", default=None)

    bkp = sub.add_parser("backup")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")

    args = parser.parse_args(argv)
    settings = load_settings(args.config)
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "plan":
        print(plan_table(args.preset))
    elif args.cmd == "list":
        for line in list_sessions(settings.db_path, args.user):
            print(line)
    elif args.cmd == "stats":
        for key, value in stats_summary(settings.db_path, args.user).items():
            print(f"{key}: {value}")
    elif args.cmd == "sync":
        if not settings.remote_url:
            parser.error("remote_url is not configured")
        _report(asyncio.run(build_sync_service(settings).sync_on_login(args.user)))
    elif args.cmd == "upload":
        if not settings.remote_url:
            parser.error("remote_url is not configured")
        _report(asyncio.run(build_sync_service(settings).upload_unsynced()))
    elif args.cmd == "export":
        data = export_sessions(settings.db_path, args.fmt, args.user)
        if args.out:
            with open(args.out, "w", encoding="utf-8") as f:
                f.write(data)
        else:
            print(data)
    elif args.cmd == "backup":
        backup_db(settings.db_path, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, settings.db_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
