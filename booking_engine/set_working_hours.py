"""Replace a provider's weekly working hours.

Usage:
    python -m booking_engine.set_working_hours PROVIDER_ID mon=09:00-12:00 mon=13:00-17:00 tue=09:00-17:00

Passing only the provider id clears its rows, so the default workday applies again.
"""
import argparse
import sys
from datetime import time

from booking_engine.database import Base, SessionLocal, engine
from booking_engine.models.working_hours import WorkingHours

WEEKDAYS = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}


def parse_window(spec: str) -> tuple[int, time, time]:
    try:
        day_name, hours = spec.split("=", 1)
        start_raw, end_raw = hours.split("-", 1)
        weekday = WEEKDAYS[day_name.strip().lower()[:3]]
        start = time.fromisoformat(start_raw.strip())
        end = time.fromisoformat(end_raw.strip())
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Invalid working window '{spec}'. Expected e.g. mon=09:00-17:00.") from exc

    if start >= end:
        raise ValueError(f"Working window '{spec}' must start before it ends.")
    return weekday, start, end


def replace_working_hours(db, provider_id: str, windows: list[tuple[int, time, time]]) -> int:
    db.query(WorkingHours).filter(WorkingHours.provider_id == provider_id).delete()
    for weekday, start, end in windows:
        db.add(WorkingHours(provider_id=provider_id, weekday=weekday, start=start, end=end))
    db.commit()
    return len(windows)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Replace a provider's weekly working hours.")
    parser.add_argument("provider_id")
    parser.add_argument("windows", nargs="*", help="weekday=HH:MM-HH:MM")
    args = parser.parse_args(argv)

    try:
        windows = [parse_window(spec) for spec in args.windows]
    except ValueError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)

    Base.metadata.create_all(bind=engine, tables=[WorkingHours.__table__])
    with SessionLocal() as db:
        count = replace_working_hours(db, args.provider_id, windows)
    print(f"Stored {count} working window(s) for {args.provider_id}.")


if __name__ == "__main__":
    main()
