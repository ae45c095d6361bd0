"""Turn Epic provider schedules into bookable appointment proposals.

A run walks providers x dates; each provider's matcher breaks a date into
units (one GetProviderSchedule call each). Units are independent, so they run
concurrently behind a shared semaphore, and a unit that fails is reported
without affecting its siblings.
"""
from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import logging
from typing import Sequence

import httpx

from .client import ScheduleGateway, make_gateway, parse_schedule_slots
from .config import EpicSettings
from .errors import ConfigurationError, MalformedScheduleError
from .matcher import AppointmentTypeMatcher, matcher_for
from .models import (
    ProposedAppointment,
    Provider,
    ProviderAvailabilityResult,
    ProviderScheduleResponse,
    ReconciliationReport,
    ReconciliationUnit,
    UnitFailure,
)

logger = logging.getLogger(__name__)


def date_range(start_date: dt.date, end_date: dt.date) -> list[dt.date]:
    """Every date from start_date through end_date, inclusive."""
    if start_date > end_date:
        raise ConfigurationError(f"Start date {start_date} is after end date {end_date}")
    return [start_date + dt.timedelta(days=offset) for offset in range((end_date - start_date).days + 1)]


def validate_providers(providers: Sequence[Provider]) -> None:
    for provider in providers:
        if provider.active:
            matcher_for(provider).validate(provider)


def unit_failure(unit: ReconciliationUnit, exc: Exception) -> UnitFailure:
    raw_response = None
    if isinstance(exc, MalformedScheduleError):
        kind = "malformed"
        raw_response = exc.raw_response
        logger.error("Malformed Epic schedule for %s: %s. Epic response JSON follows:\n%s", unit.describe(), exc, raw_response)
    else:
        kind = "remote"
        if isinstance(exc, httpx.HTTPStatusError):
            raw_response = exc.response.text
        logger.error("Unable to fetch Epic schedule for %s: %r", unit.describe(), exc)

    return UnitFailure(
        provider_id=unit.provider.provider_id,
        department_id=unit.department.epic_department_id,
        epic_department_id_value=unit.department.department_id,
        date=unit.date,
        visit_type_id=unit.appointment_type.epic_visit_type_id if unit.appointment_type else None,
        kind=kind,
        message=str(exc) or exc.__class__.__name__,
        raw_response=raw_response,
    )


async def fetch_schedule(
    matcher: AppointmentTypeMatcher,
    unit: ReconciliationUnit,
    *,
    settings: EpicSettings,
    gateway: ScheduleGateway,
    semaphore: asyncio.Semaphore | None = None,
) -> ProviderScheduleResponse:
    user_id, user_id_type = settings.require_user()
    request = matcher.build_request(unit, user_id, user_id_type)
    async with semaphore or contextlib.nullcontext():
        return await gateway(request)


async def _reconcile_unit(
    matcher: AppointmentTypeMatcher,
    unit: ReconciliationUnit,
    *,
    settings: EpicSettings,
    gateway: ScheduleGateway,
    semaphore: asyncio.Semaphore | None,
) -> tuple[list[ProposedAppointment], UnitFailure | None, ProviderScheduleResponse | None]:
    # A unit's failure must never reach the caller's gather
    response = None
    try:
        response = await fetch_schedule(matcher, unit, settings=settings, gateway=gateway, semaphore=semaphore)
        slots = parse_schedule_slots(response)
        return matcher.match(unit, slots), None, response
    except Exception as e:
        return [], unit_failure(unit, e), response


async def generate_provider_availability(
    provider: Provider,
    on_date: dt.date,
    *,
    settings: EpicSettings,
    gateway: ScheduleGateway | None = None,
    semaphore: asyncio.Semaphore | None = None,
) -> ProviderAvailabilityResult:
    """Everything bookable for one provider on one date, across all their departments.

    Without a shared ``semaphore`` the provider's units are still limited to
    ``settings.max_concurrency`` calls in flight.
    """
    result = ProviderAvailabilityResult(provider_id=provider.provider_id, date=on_date, time_zone=provider.time_zone)
    if not provider.active:
        return result

    matcher = matcher_for(provider)
    matcher.validate(provider)
    settings.require_user()
    gateway = gateway or make_gateway(settings)
    if semaphore is None:
        semaphore = asyncio.Semaphore(settings.max_concurrency)

    logger.info("Processing %s on %s...", provider.display_name, on_date.isoformat())

    units = matcher.units(provider, on_date)
    outcomes = await asyncio.gather(*[
        _reconcile_unit(matcher, unit, settings=settings, gateway=gateway, semaphore=semaphore)
        for unit in units
    ])
    for unit, (proposals, failure, response) in zip(units, outcomes):
        result.proposed_appointments.extend(proposals)
        if failure is not None:
            result.failures.append(failure)
        if response is not None:
            result.schedules.append((unit, response))
    return result


async def reconcile_schedules(
    providers: Sequence[Provider],
    start_date: dt.date,
    end_date: dt.date,
    *,
    settings: EpicSettings,
    gateway: ScheduleGateway | None = None,
    max_concurrency: int | None = None,
    timeout: float | None = None,
) -> ReconciliationReport:
    """Reconcile every active provider for every date in [start_date, end_date].

    Configuration problems raise ConfigurationError before Epic is called.
    Per-unit failures are collected in the report; whether partial success is
    acceptable is the caller's decision. ``timeout`` bounds the whole run.
    """
    dates = date_range(start_date, end_date)
    settings.require_user()
    validate_providers(providers)
    gateway = gateway or make_gateway(settings)

    active_providers = []
    for provider in providers:
        if provider.active:
            active_providers.append(provider)
        else:
            logger.info("Skipping inactive provider %s", provider.display_name)

    semaphore = asyncio.Semaphore(max_concurrency or settings.max_concurrency)
    results = await asyncio.wait_for(
        asyncio.gather(*[
            generate_provider_availability(provider, on_date, settings=settings, gateway=gateway, semaphore=semaphore)
            for provider in active_providers
            for on_date in dates
        ]),
        timeout=timeout,
    )

    report = ReconciliationReport(start_date=start_date, end_date=end_date, results=list(results))
    logger.info(
        "Reconciled %d provider(s) from %s to %s: %d proposed appointment(s), %d failed unit(s)",
        len(active_providers), start_date.isoformat(), end_date.isoformat(),
        sum(len(result.proposed_appointments) for result in report.results), len(report.failures),
    )
    return report
