from __future__ import annotations

import argparse
from datetime import date, datetime, time

from clinic_backend import config
from clinic_backend.db import configure_engine
from clinic_backend.errors import SchedulingError
from clinic_backend.logging_config import setup_logging
from clinic_backend.models import DoctorType, VisitReason
from clinic_backend.seed import seed_base
from clinic_backend.services import (
    RescheduleResult,
    book_visit,
    cancel_visit,
    complete_visit,
    create_doctor,
    edit_window,
    get_day_schedule,
    init_db,
    list_doctors_flat,
    mark_notification_sent,
    now_serving,
    pending_notifications_flat,
    reschedule_day,
)


def _print_result(result: RescheduleResult) -> None:
    print(f"Schedule {result.appointment_date.isoformat()} ({len(result.assignments)} visits):")
    for a in result.assignments:
        print(f"  #{a.serial:>2}  {a.scheduled_at:%H:%M}  {a.visit_id}")


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    seed_base()
    print("Database initialised and demo doctors seeded.")


def cmd_list_doctors(args: argparse.Namespace) -> None:
    for d in list_doctors_flat():
        print(f"{d['id']} | {d['name']} | {d['doctor_type']} | {d['specialty'] or '-'}")


def cmd_add_doctor(args: argparse.Namespace) -> None:
    doctor_id = create_doctor(args.name, DoctorType(args.type), args.specialty)
    print(f"Doctor created: {doctor_id}")


def cmd_set_window(args: argparse.Namespace) -> None:
    result = edit_window(
        args.doctor_id,
        date.fromisoformat(args.date),
        start_time=time.fromisoformat(args.start),
        break_start=time.fromisoformat(args.break_start),
        break_end=time.fromisoformat(args.break_end),
        end_time=time.fromisoformat(args.end),
        max_appointments=args.max_appointments,
        location=args.location,
    )
    _print_result(result)


def cmd_book(args: argparse.Namespace) -> None:
    visit = book_visit(
        args.doctor_id,
        date.fromisoformat(args.date),
        args.identity,
        VisitReason(args.reason),
        name=args.name,
        phone=args.phone,
        concern=args.concern,
    )
    print(f"Booked serial {visit.serial} at {visit.scheduled_at:%H:%M} (visit {visit.id}).")


def cmd_cancel(args: argparse.Namespace) -> None:
    _print_result(cancel_visit(args.visit_id, "Absent" if args.absent else "Cancelled"))


def cmd_complete(args: argparse.Namespace) -> None:
    _print_result(complete_visit(args.visit_id))


def cmd_schedule(args: argparse.Namespace) -> None:
    day = date.fromisoformat(args.date)
    visits = get_day_schedule(args.doctor_id, day, include_closed=args.all)
    if not visits:
        print("No visits.")
        return
    for v in visits:
        print(f"#{v.serial:>2} | {v.scheduled_at:%H:%M} | {v.reason.value:<11} | {v.status.value:<9} | {v.patient_identity} | {v.name or '-'}")
    print(f"Now serving: {now_serving(args.doctor_id, day, datetime.now())}")


def cmd_reschedule(args: argparse.Namespace) -> None:
    _print_result(reschedule_day(args.doctor_id, date.fromisoformat(args.date)))


def cmd_notifications(args: argparse.Namespace) -> None:
    """
    Stands in for the external notification system:
    - reads pending notifications
    - prints them
    - optionally marks them sent
    """
    pending = pending_notifications_flat(limit=args.limit)
    if not pending:
        print("No pending notifications.")
        return

    for n in pending:
        print(f"[{n['id']}] {n['kind']} | {n['created_at'].isoformat()} | {n['message']}")
        if args.mark_sent:
            mark_notification_sent(n["id"])

    if args.mark_sent:
        print("Notifications marked as sent.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="clinic-schedule", description="Clinic day scheduling CLI")
    p.add_argument("--db", default=None, help="Database URL (default: DATABASE_URL / local SQLite file)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create tables and seed demo doctors")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list-doctors", help="List active doctors")
    p_list.set_defaults(func=cmd_list_doctors)

    p_doc = sub.add_parser("add-doctor", help="Create a doctor")
    p_doc.add_argument("--name", required=True)
    p_doc.add_argument("--type", choices=[t.value for t in DoctorType], default=DoctorType.GENERAL.value)
    p_doc.add_argument("--specialty", default=None)
    p_doc.set_defaults(func=cmd_add_doctor)

    p_win = sub.add_parser("set-window", help="Create or edit a day's availability (reschedules booked visits)")
    p_win.add_argument("--doctor-id", required=True)
    p_win.add_argument("--date", required=True, help="YYYY-MM-DD")
    p_win.add_argument("--start", required=True, help="HH:MM")
    p_win.add_argument("--break-start", required=True, help="HH:MM")
    p_win.add_argument("--break-end", required=True, help="HH:MM")
    p_win.add_argument("--end", required=True, help="HH:MM")
    p_win.add_argument("--max-appointments", type=int, default=None)
    p_win.add_argument("--location", default=None)
    p_win.set_defaults(func=cmd_set_window)

    p_book = sub.add_parser("book", help="Book the next serial of a day")
    p_book.add_argument("--doctor-id", required=True)
    p_book.add_argument("--date", required=True, help="YYYY-MM-DD")
    p_book.add_argument("--identity", required=True, help="Patient identity (PIN)")
    p_book.add_argument("--reason", choices=[r.value for r in VisitReason], required=True)
    p_book.add_argument("--name", default=None)
    p_book.add_argument("--phone", default=None)
    p_book.add_argument("--concern", default=None)
    p_book.set_defaults(func=cmd_book)

    p_cancel = sub.add_parser("cancel", help="Cancel a visit (or mark it absent)")
    p_cancel.add_argument("--visit-id", required=True)
    p_cancel.add_argument("--absent", action="store_true", help="Mark absent instead of cancelled")
    p_cancel.set_defaults(func=cmd_cancel)

    p_done = sub.add_parser("complete", help="Mark a visit completed")
    p_done.add_argument("--visit-id", required=True)
    p_done.set_defaults(func=cmd_complete)

    p_sched = sub.add_parser("schedule", help="Show a day's schedule")
    p_sched.add_argument("--doctor-id", required=True)
    p_sched.add_argument("--date", required=True, help="YYYY-MM-DD")
    p_sched.add_argument("--all", action="store_true", help="Include cancelled/absent/completed visits")
    p_sched.set_defaults(func=cmd_schedule)

    p_res = sub.add_parser("reschedule", help="Recompute serials and times of a day")
    p_res.add_argument("--doctor-id", required=True)
    p_res.add_argument("--date", required=True, help="YYYY-MM-DD")
    p_res.set_defaults(func=cmd_reschedule)

    p_not = sub.add_parser("notifications", help="Read (and send) pending notifications")
    p_not.add_argument("--limit", type=int, default=50)
    p_not.add_argument("--mark-sent", action="store_true", help="Mark as sent after printing")
    p_not.set_defaults(func=cmd_notifications)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(config.LOG_LEVEL)
    if args.db:
        configure_engine(args.db)
    init_db()  # tables always present
    try:
        args.func(args)
    except SchedulingError as e:
        print(f"Error [{e.code}]: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
