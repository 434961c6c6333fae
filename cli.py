import argparse
import csv
import datetime
import json
import logging
import os
import shutil
import sys
from typing import Optional

from config import APP_VERSION, DEFAULT_DB_PATH
from db import SessionRepository, SetLogRepository
from models import LoggedSet
from rest_timer import RestTimer
from tools import Formatter, MathTools, REST_TIMER_PRESETS, WeightConverter

logger = logging.getLogger(__name__)

EXPORT_FIELDS = [
    "session_id",
    "created_at",
    "routine",
    "exercise",
    "category",
    "set_number",
    "reps",
    "weight_kg",
    "set_type",
    "is_warmup",
]


def configure_logging(debug: bool = False) -> None:
    """Set the log level from ``--debug`` or ``LIFTLOG_LOG_LEVEL``."""
    level_name = os.environ.get("LIFTLOG_LOG_LEVEL", "INFO").upper()
    level = logging.DEBUG if debug else getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def positive_int(value: str) -> int:
    try:
        seconds = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}")
    if seconds <= 0:
        raise argparse.ArgumentTypeError("must be a positive number of seconds")
    return seconds


def print_1rm(weight: float, reps: float) -> None:
    estimate = MathTools.estimate_1rm(weight, reps)
    if estimate <= 0:
        print("Enter a weight above 0 and between 1 and 30 reps")
        return
    print(f"Epley:    {Formatter.format_weight(MathTools.epley_1rm(weight, reps))}")
    print(f"Brzycki:  {Formatter.format_weight(MathTools.brzycki_1rm(weight, reps))}")
    print(f"Estimate: {Formatter.format_weight(estimate)}")


def print_table(one_rm: float) -> None:
    for row in MathTools.rep_percentages(one_rm):
        print(f"{row['reps']:>3} reps  {row['percent']:>3}%  {row['weight']} kg")


def run_timer(seconds: int) -> None:
    timer = RestTimer(seconds)
    timer.select_preset(seconds)

    def show(t: RestTimer) -> None:
        print(f"\r{t.display}", end="", flush=True)

    show(timer)
    try:
        timer.run(on_tick=show)
    except KeyboardInterrupt:
        print()
        logger.info("Timer stopped at %s", timer.display)
        return
    print("\nRest over")


def export_sessions(db_path: str, fmt: str, output_dir: str = ".") -> list[str]:
    """Write one file per session and return the written paths."""
    sessions = SessionRepository(db_path)
    sets = SetLogRepository(db_path)
    written = []
    for session in sessions.fetch_all_sessions(descending=False):
        sid = session["id"]
        rows = sets.fetch_history(session_ids=[sid])
        out_path = os.path.join(output_dir, f"session_{sid}.{fmt}")
        with open(out_path, "w", encoding="utf-8", newline="") as f:
            if fmt == "csv":
                writer = csv.DictWriter(f, fieldnames=EXPORT_FIELDS, extrasaction="ignore")
                writer.writeheader()
                writer.writerows(rows)
            else:
                json.dump(
                    {
                        **session,
                        "volume": MathTools.volume(rows),
                        "sets": [{k: r[k] for k in EXPORT_FIELDS} for r in rows],
                    },
                    f,
                    indent=2,
                )
        written.append(out_path)
    logger.info("Exported %d sessions to %s", len(written), output_dir)
    return written


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)
    logger.info("Backed up %s to %s", db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)
    logger.info("Restored %s from %s", db_path, backup_path)


def demo_data(db_path: str, yaml_path: str) -> bool:
    """Populate the database with a demo routine and sessions if empty."""
    from rest_api import TrainingAPI

    api = TrainingAPI(db_path=db_path, yaml_path=yaml_path)
    if api.sessions.fetch_all_sessions(limit=1):
        print("Database already contains sessions")
        return False
    chest = api.categories.add("Chest")
    legs = api.categories.add("Legs")
    bench = api.exercises.add("Bench Press", chest)
    squat = api.exercises.add("Squat", legs)
    routine = api.routines.create("Full Body")
    api.routines.set_exercises(routine, [bench, squat])

    today = datetime.datetime.now(datetime.timezone.utc)
    plan = [(4, 80.0, 100.0), (2, 82.5, 105.0), (0, 85.0, 110.0)]
    for days_ago, bench_kg, squat_kg in plan:
        when = (today - datetime.timedelta(days=days_ago)).isoformat()
        sid = api.sessions.create(routine, created_at=when, completed_at=when, duration_seconds=3000)
        entries = []
        for ex_id, weight in ((bench, bench_kg), (squat, squat_kg)):
            for number, reps in enumerate((10, 8, 6), start=1):
                entries.append(
                    LoggedSet(exercise_id=ex_id, reps=reps, weight_kg=weight, set_number=number)
                )
        api.sets.bulk_add(sid, entries)
    print("Demo data inserted")
    return True


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="LiftLog utility commands")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    calc = sub.add_parser("calc", help="estimate a one-rep max")
    calc.add_argument("--weight", type=float, required=True)
    calc.add_argument("--reps", type=float, required=True)

    table = sub.add_parser("table", help="rep-max table for a one-rep max")
    table.add_argument("--one-rm", dest="one_rm", type=float, required=True)

    timer = sub.add_parser("timer", help="run a rest countdown")
    timer.add_argument("--seconds", type=positive_int, default=90)

    conv = sub.add_parser("convert")
    conv.add_argument("--weight", type=float, required=True)
    conv.add_argument("--unit", choices=["kg", "lb"], required=True)

    exp = sub.add_parser("export")
    exp.add_argument("--db", default=DEFAULT_DB_PATH)
    exp.add_argument("--fmt", choices=["csv", "json"], default="csv")
    exp.add_argument("--out", default=".")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default=DEFAULT_DB_PATH)
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default=DEFAULT_DB_PATH)

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default=DEFAULT_DB_PATH)
    demo.add_argument("--yaml", default="settings.yaml")

    args = parser.parse_args(argv)
    configure_logging(args.debug)

    if args.cmd == "calc":
        print_1rm(args.weight, args.reps)
    elif args.cmd == "table":
        print_table(args.one_rm)
    elif args.cmd == "timer":
        if args.seconds not in REST_TIMER_PRESETS:
            logger.warning("%s seconds is not one of the presets", args.seconds)
        run_timer(args.seconds)
    elif args.cmd == "convert":
        if args.unit == "kg":
            print(f"{args.weight} kg = {WeightConverter.kg_to_lb(args.weight)} lb")
        else:
            print(f"{args.weight} lb = {WeightConverter.lb_to_kg(args.weight)} kg")
    elif args.cmd == "export":
        export_sessions(args.db, args.fmt, args.out)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "demo":
        demo_data(args.db, args.yaml)


if __name__ == "__main__":
    main(sys.argv[1:])
