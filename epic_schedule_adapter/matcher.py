"""Decide which appointment types a provider's Epic slots can be booked as.

Providers either filter explicitly on Epic visit types (one schedule lookup per
appointment type and department) or let us infer appointment types from slot
length (one lookup per department, any slot whose length matches an
appointment type's duration is offered as that type).
"""
from __future__ import annotations

import datetime as dt
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Sequence

from .errors import ConfigurationError
from .models import (
    AppointmentType,
    EpicAppointmentFilterId,
    ProposedAppointment,
    Provider,
    ProviderScheduleRequest,
    ReconciliationUnit,
    ScheduleSlot,
)
from .reconciler import bookable_start_times

logger = logging.getLogger(__name__)

EPIC_SCHEDULING_SYSTEM_ID = "EPIC"


def epic_appointment_types(provider: Provider) -> list[AppointmentType]:
    return [t for t in provider.appointment_types if t.scheduling_system_id == EPIC_SCHEDULING_SYSTEM_ID]


def appointment_types_by_duration(appointment_types: Iterable[AppointmentType]) -> dict[int, list[AppointmentType]]:
    buckets: dict[int, list[AppointmentType]] = {}
    for appointment_type in appointment_types:
        buckets.setdefault(appointment_type.duration_minutes, []).append(appointment_type)
    return buckets


def _proposal(unit: ReconciliationUnit, appointment_type: AppointmentType, start: dt.time) -> ProposedAppointment:
    return ProposedAppointment(
        appointment_type_id=appointment_type.appointment_type_id,
        provider_id=unit.provider.provider_id,
        department_id=unit.department.epic_department_id,
        start_date_time=dt.datetime.combine(unit.date, start),
        duration_minutes=appointment_type.duration_minutes,
    )


class AppointmentTypeMatcher(ABC):
    filter_id: EpicAppointmentFilterId

    def validate(self, provider: Provider) -> None:
        """Raise ConfigurationError if the provider cannot be reconciled with this strategy."""

    @abstractmethod
    def units(self, provider: Provider, on_date: dt.date) -> list[ReconciliationUnit]:
        ...

    @abstractmethod
    def match(self, unit: ReconciliationUnit, slots: Sequence[ScheduleSlot]) -> list[ProposedAppointment]:
        ...

    def build_request(self, unit: ReconciliationUnit, user_id: str, user_id_type: str) -> ProviderScheduleRequest:
        appointment_type = unit.appointment_type
        return ProviderScheduleRequest(
            date=unit.date,
            provider_id=unit.provider.epic_provider_id,
            provider_id_type=unit.provider.epic_provider_id_type,
            department_id=unit.department.department_id,
            department_id_type=unit.department.department_id_type,
            visit_type_id=appointment_type.epic_visit_type_id if appointment_type else None,
            visit_type_id_type=appointment_type.epic_visit_type_id_type if appointment_type else None,
            user_id=user_id,
            user_id_type=user_id_type,
        )


class VisitTypeFilterMatcher(AppointmentTypeMatcher):
    """Ask Epic for each visit type separately.

    Some organizations only apply their scheduling rules when the visit type
    is part of the query, so the slots that come back are only ever offered as
    the appointment type that asked for them.
    """
    filter_id = EpicAppointmentFilterId.VISIT_TYPE

    def validate(self, provider: Provider) -> None:
        for appointment_type in epic_appointment_types(provider):
            if not appointment_type.epic_visit_type_id or not appointment_type.epic_visit_type_id_type:
                raise ConfigurationError(
                    f"Appointment type {appointment_type.appointment_type_id} for {provider.display_name} "
                    f"has no Epic visit type, which is required for visit type filtering"
                )

    def units(self, provider: Provider, on_date: dt.date) -> list[ReconciliationUnit]:
        return [
            ReconciliationUnit(provider=provider, department=department, date=on_date, appointment_type=appointment_type)
            for appointment_type in epic_appointment_types(provider)
            for department in provider.departments
        ]

    def match(self, unit: ReconciliationUnit, slots: Sequence[ScheduleSlot]) -> list[ProposedAppointment]:
        appointment_type = unit.appointment_type
        if appointment_type is None:
            raise ValueError("Visit type filtering needs a unit scoped to an appointment type")

        starts = bookable_start_times(slots, unit.date, appointment_type.duration_minutes)
        return [_proposal(unit, appointment_type, start) for start in starts]


class DurationInferenceMatcher(AppointmentTypeMatcher):
    """Offer any open slot as every appointment type with the same duration."""
    filter_id = EpicAppointmentFilterId.NONE

    def units(self, provider: Provider, on_date: dt.date) -> list[ReconciliationUnit]:
        return [ReconciliationUnit(provider=provider, department=department, date=on_date) for department in provider.departments]

    def match(self, unit: ReconciliationUnit, slots: Sequence[ScheduleSlot]) -> list[ProposedAppointment]:
        buckets = appointment_types_by_duration(epic_appointment_types(unit.provider))

        for slot in slots:
            if slot.available_openings > 0 and slot.length_minutes not in buckets:
                logger.info(
                    "No appointment type found for the %s-minute slot for %s in department %s on %s at %s.",
                    slot.length_minutes, unit.provider.display_name, unit.department.department_id,
                    unit.date.isoformat(), slot.start_time.strftime("%H:%M"),
                )

        proposals = []
        for duration, appointment_types in buckets.items():
            candidates = [slot for slot in slots if slot.length_minutes == duration]
            if not candidates:
                continue
            for start in bookable_start_times(slots, unit.date, duration, candidates):
                proposals.extend(_proposal(unit, appointment_type, start) for appointment_type in appointment_types)

        proposals.sort(key=lambda proposal: proposal.start_date_time)
        return proposals


_MATCHERS: dict[EpicAppointmentFilterId, AppointmentTypeMatcher] = {
    EpicAppointmentFilterId.VISIT_TYPE: VisitTypeFilterMatcher(),
    EpicAppointmentFilterId.NONE: DurationInferenceMatcher(),
}


def matcher_for(provider: Provider) -> AppointmentTypeMatcher:
    return _MATCHERS[provider.epic_appointment_filter_id]
