#!/usr/bin/env python3
"""Print one employee's attendance records and daily balance for a date range."""

import argparse
import os
import sys
from datetime import date, timedelta

from rich.console import Console
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.settings import APP_TIMEZONE
from db.session import engine
from models.employee import Employee
from services.attendance_store import AttendanceStore
from services.history_service import employee_history
from utils.timezone_helpers import from_utc_to_local

console = Console()


def view_attendance(employee_id: str, start: date, end: date) -> int:
    with Session(engine) as session:
        employee = session.get(Employee, employee_id)
    if employee is None:
        console.print(f"[bold red]Employee {employee_id} not found.[/bold red]")
        return 1

    store = AttendanceStore(engine, APP_TIMEZONE)
    summaries = employee_history(store, employee.id, employee.shift_list(), start, end)
    if not summaries:
        console.print("[yellow]No records in this period.[/yellow]")
        return 0

    for summary in summaries:
        table = Table(
            title=f"[bold green]{employee.name} - {summary.day} ({summary.shift_name or 'no shift'})[/bold green]",
            show_lines=True,
        )
        for col in ["Time", "Type", "Location", "Distance", "Score", "Punctuality"]:
            table.add_column(col, overflow="fold")

        for record in reversed(summary.records):
            table.add_row(
                from_utc_to_local(record.timestamp, APP_TIMEZONE).strftime("%H:%M:%S"),
                record.type,
                record.location_name,
                f"{record.distance_meters}m",
                str(record.score),
                record.punctuality_message or record.punctuality_status,
            )
        console.print(table)
        console.print(
            f"To work [bold]{summary.total_to_work}[/bold]  worked [bold]{summary.total_worked}[/bold]  "
            f"owed [red]{summary.hours_owed}[/red]  overtime [green]{summary.overtime}[/green]\n"
        )
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("employee_id")
    parser.add_argument("--start", type=date.fromisoformat, default=date.today() - timedelta(days=6))
    parser.add_argument("--end", type=date.fromisoformat, default=date.today())
    args = parser.parse_args()

    try:
        sys.exit(view_attendance(args.employee_id, args.start, args.end))
    except SQLAlchemyError as e:
        console.print(f"[bold red]Database error occurred:[/bold red] {e}")
        sys.exit(1)
