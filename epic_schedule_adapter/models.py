import datetime as dt
from enum import Enum
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, PositiveInt, NonNegativeInt, PrivateAttr, computed_field, field_validator

EPIC_DATE_FORMAT = "%m/%d/%Y"


# Epic wire models -----------------------------------------------------------

class ProviderScheduleRequest(BaseModel):
    date: dt.date
    provider_id: str
    provider_id_type: str
    department_id: str
    department_id_type: str
    visit_type_id: str | None = None
    visit_type_id_type: str | None = None
    user_id: str
    user_id_type: str

    def to_epic_body(self) -> dict[str, str]:
        """Serialize to the PascalCase body GetProviderSchedule expects."""
        body = {
            "Date": self.date.strftime(EPIC_DATE_FORMAT),
            "ProviderID": self.provider_id,
            "ProviderIDType": self.provider_id_type,
            "DepartmentID": self.department_id,
            "DepartmentIDType": self.department_id_type,
            "UserID": self.user_id,
            "UserIDType": self.user_id_type,
        }
        if self.visit_type_id:
            body["VisitTypeID"] = self.visit_type_id
            body["VisitTypeIDType"] = self.visit_type_id_type or ""
        return body


class ScheduleSlotPayload(BaseModel):
    """One entry of ScheduleSlots, exactly as Epic sent it."""
    start_time: str | None = Field(default=None, alias="StartTime")  # e.g. "9:00 AM"
    length: str | None = Field(default=None, alias="Length")  # minutes
    available_openings: str | None = Field(default=None, alias="AvailableOpenings")
    original_openings: str | None = Field(default=None, alias="OriginalOpenings")
    overbook_openings: str | None = Field(default=None, alias="OverbookOpenings")
    public: bool | None = Field(default=None, alias="Public")
    held_time_reason: str | None = Field(default=None, alias="HeldTimeReason")
    held_time_comment: str | None = Field(default=None, alias="HeldTimeComment")
    held_time_all_day: bool | None = Field(default=None, alias="HeldTimeAllDay")
    unavailable_time_reason: str | None = Field(default=None, alias="UnavailableTimeReason")
    unavailable_time_comment: str | None = Field(default=None, alias="UnavailableTimeComment")

    model_config = {
        "populate_by_name": True
    }

    @field_validator("length", "available_openings", "original_openings", "overbook_openings", mode="before")
    @classmethod
    def _numbers_as_text(cls, value):
        # Epic encodes these as strings; tolerate bare JSON numbers and parse both the same way later
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ProviderScheduleResponse(BaseModel):
    date: str | None = Field(default=None, alias="Date")
    unavailable_day_reason: str | None = Field(default=None, alias="UnavailableDayReason")
    unavailable_day_comment: str | None = Field(default=None, alias="UnavailableDayComment")
    schedule_slots: list[ScheduleSlotPayload] | None = Field(default=None, alias="ScheduleSlots")
    raw_json: str | None = Field(default=None, exclude=True)

    model_config = {
        "populate_by_name": True
    }


# Domain models --------------------------------------------------------------

class ScheduleSlot(BaseModel):
    """A parsed schedule slot for one provider/department/date."""
    start_time: dt.time
    length_minutes: PositiveInt
    available_openings: NonNegativeInt
    original_openings: NonNegativeInt = 0
    is_public: bool = False
    held_reason: str | None = None
    held_comment: str | None = None
    unavailable_reason: str | None = None
    unavailable_comment: str | None = None
    held_all_day: bool = False  # informational only

    model_config = {
        "frozen": True
    }

    @property
    def held(self) -> bool:
        return bool((self.held_reason or "").strip())

    @property
    def unavailable(self) -> bool:
        return bool((self.unavailable_reason or "").strip())

    @property
    def blocked(self) -> bool:
        """Held or unavailable time is never bookable, whatever the openings count says."""
        return self.held or self.unavailable


class EpicAppointmentFilterId(str, Enum):
    VISIT_TYPE = "VISIT_TYPE"
    NONE = "NONE"


class AppointmentType(BaseModel):
    appointment_type_id: str
    name: str | None = None
    duration_minutes: PositiveInt
    epic_visit_type_id: str | None = None
    epic_visit_type_id_type: str | None = None
    scheduling_system_id: str = "EPIC"


class EpicDepartment(BaseModel):
    epic_department_id: str  # our identifier
    department_id: str  # Epic's identifier
    department_id_type: str
    name: str | None = None


class Provider(BaseModel):
    provider_id: str
    name: str | None = None
    epic_provider_id: str
    epic_provider_id_type: str
    time_zone: str = "America/New_York"
    active: bool = True
    epic_appointment_filter_id: EpicAppointmentFilterId = EpicAppointmentFilterId.NONE
    appointment_types: list[AppointmentType] = []
    departments: list[EpicDepartment] = []

    @field_validator("time_zone")
    @classmethod
    def _known_time_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone {value!r}") from e
        return value

    @property
    def display_name(self) -> str:
        return f"{self.name or 'Unnamed provider'} ({self.epic_provider_id})"


class ReconciliationUnit(BaseModel):
    """The scope of one GetProviderSchedule call."""
    provider: Provider
    department: EpicDepartment
    date: dt.date
    appointment_type: AppointmentType | None = None  # only for visit type filtering

    model_config = {
        "frozen": True
    }

    def describe(self) -> str:
        text = f"{self.provider.display_name} in department {self.department.department_id} on {self.date.isoformat()}"
        if self.appointment_type is not None:
            text += f" for visit type {self.appointment_type.epic_visit_type_id}"
        return text


class ProposedAppointment(BaseModel):
    appointment_type_id: str
    provider_id: str
    department_id: str  # EpicDepartment.epic_department_id
    start_date_time: dt.datetime
    duration_minutes: PositiveInt

    model_config = {
        "frozen": True
    }


class UnitFailure(BaseModel):
    provider_id: str
    department_id: str  # EpicDepartment.epic_department_id, as on ProposedAppointment
    epic_department_id_value: str  # EpicDepartment.department_id sent to Epic
    date: dt.date
    visit_type_id: str | None = None
    kind: Literal["malformed", "remote"]
    message: str
    raw_response: str | None = None


class ProviderAvailabilityResult(BaseModel):
    provider_id: str
    date: dt.date
    time_zone: str
    proposed_appointments: list[ProposedAppointment] = []
    failures: list[UnitFailure] = []

    # Epic responses behind this result, for the slot CSV; never serialized
    _schedules: list[tuple[ReconciliationUnit, ProviderScheduleResponse]] = PrivateAttr(default_factory=list)

    @property
    def schedules(self) -> list[tuple[ReconciliationUnit, ProviderScheduleResponse]]:
        return self._schedules


class ReconciliationReport(BaseModel):
    start_date: dt.date
    end_date: dt.date
    results: list[ProviderAvailabilityResult] = []

    @computed_field
    @property
    def failures(self) -> list[UnitFailure]:
        return [failure for result in self.results for failure in result.failures]

    @computed_field
    @property
    def succeeded(self) -> bool:
        return not self.failures
