"""Flatten raw Epic schedule slots into a CSV for reporting.

One row per slot as Epic returned it, with provider/department/visit type
context attached. Nothing here is reconciled; it is meant for eyeballing what
Epic actually says about a provider's calendar.
"""
from __future__ import annotations

import asyncio
import csv
import datetime as dt
import io
import logging
from typing import Iterable, Sequence, TextIO

from pydantic import BaseModel

from .client import ScheduleGateway, make_gateway
from .config import EpicSettings
from .matcher import matcher_for
from .errors import MalformedScheduleError
from .models import Provider, ProviderScheduleResponse, ReconciliationReport, ReconciliationUnit
from .orchestrator import date_range, fetch_schedule, unit_failure, validate_providers

logger = logging.getLogger(__name__)

CSV_COLUMN_HEADERS = [
    "Provider ID",
    "Provider Name",
    "Department ID",
    "Department Name",
    "Visit Type ID",
    "Date",
    "Start Time",
    "Length",
    "Available Openings",
    "Original Openings",
    "Overbook Openings",
    "Public",
    "Unavailable Time Reason",
    "Unavailable Time Comment",
    "Held Time Reason",
    "Held Time Comment",
    "Held Time All Day",
    "Unavailable Day Reason",
    "Unavailable Day Comment",
]


class ScheduleCsvRow(BaseModel):
    provider_id: str = ""
    provider_name: str = ""
    department_id: str = ""
    department_name: str = ""
    visit_type_id: str = ""
    date: str = ""
    start_time: str = ""
    length: str = ""
    available_openings: str = ""
    original_openings: str = ""
    overbook_openings: str = ""
    public: str = ""
    unavailable_time_reason: str = ""
    unavailable_time_comment: str = ""
    held_time_reason: str = ""
    held_time_comment: str = ""
    held_time_all_day: str = ""
    unavailable_day_reason: str = ""
    unavailable_day_comment: str = ""

    def as_record(self) -> list[str]:
        # field order matches CSV_COLUMN_HEADERS
        return list(self.model_dump().values())


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value).strip()


def rows_for_response(unit: ReconciliationUnit, response: ProviderScheduleResponse) -> list[ScheduleCsvRow]:
    if response.schedule_slots is None:
        raise MalformedScheduleError("Unable to detect schedule slots in Epic response", raw_response=response.raw_json)

    appointment_type = unit.appointment_type
    rows = []
    for slot in response.schedule_slots:
        rows.append(ScheduleCsvRow(
            provider_id=unit.provider.epic_provider_id,
            provider_name=_text(unit.provider.name),
            department_id=unit.department.department_id,
            department_name=_text(unit.department.name),
            visit_type_id=_text(appointment_type.epic_visit_type_id if appointment_type else None),
            date=_text(response.date),
            start_time=_text(slot.start_time),
            length=_text(slot.length),
            available_openings=_text(slot.available_openings),
            original_openings=_text(slot.original_openings),
            overbook_openings=_text(slot.overbook_openings),
            public=_text(slot.public),
            unavailable_time_reason=_text(slot.unavailable_time_reason),
            unavailable_time_comment=_text(slot.unavailable_time_comment),
            held_time_reason=_text(slot.held_time_reason),
            held_time_comment=_text(slot.held_time_comment),
            held_time_all_day=_text(slot.held_time_all_day),
            unavailable_day_reason=_text(response.unavailable_day_reason),
            unavailable_day_comment=_text(response.unavailable_day_comment),
        ))
    return rows


async def collect_schedule_rows(
    providers: Sequence[Provider],
    start_date: dt.date,
    end_date: dt.date,
    *,
    settings: EpicSettings,
    gateway: ScheduleGateway | None = None,
    max_concurrency: int | None = None,
) -> list[ScheduleCsvRow]:
    dates = date_range(start_date, end_date)
    settings.require_user()
    validate_providers(providers)
    gateway = gateway or make_gateway(settings)
    semaphore = asyncio.Semaphore(max_concurrency or settings.max_concurrency)

    async def _rows(unit: ReconciliationUnit) -> list[ScheduleCsvRow]:
        matcher = matcher_for(unit.provider)
        try:
            response = await fetch_schedule(matcher, unit, settings=settings, gateway=gateway, semaphore=semaphore)
            return rows_for_response(unit, response)
        except Exception as e:
            failure = unit_failure(unit, e)
            logger.warning("Leaving %s out of the schedule export (%s)", unit.describe(), failure.kind)
            return []

    units = [
        unit
        for on_date in dates
        for provider in providers if provider.active
        for unit in matcher_for(provider).units(provider, on_date)
    ]
    batches = await asyncio.gather(*[_rows(unit) for unit in units])
    return [row for batch in batches for row in batch]


def rows_for_report(report: ReconciliationReport) -> list[ScheduleCsvRow]:
    """CSV rows from the Epic responses a reconciliation run already fetched."""
    rows = []
    for result in report.results:
        for unit, response in result.schedules:
            try:
                rows.extend(rows_for_response(unit, response))
            except MalformedScheduleError:
                logger.warning("Leaving %s out of the schedule export (malformed)", unit.describe())
    return rows


def write_schedule_csv(rows: Iterable[ScheduleCsvRow], stream: TextIO) -> int:
    writer = csv.writer(stream)
    writer.writerow(CSV_COLUMN_HEADERS)
    count = 0
    for row in rows:
        writer.writerow(row.as_record())
        count += 1
    return count


def schedule_csv_text(rows: Iterable[ScheduleCsvRow]) -> str:
    output = io.StringIO()
    write_schedule_csv(rows, output)
    return output.getvalue()
