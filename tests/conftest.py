import asyncio, json, pathlib
import pytest
from epic_schedule_adapter.client import parse_schedule_response
from epic_schedule_adapter.config import EpicSettings
from epic_schedule_adapter.models import AppointmentType, EpicAppointmentFilterId, EpicDepartment, Provider

FIX = pathlib.Path(__file__).parent / "fixtures"
BASE = "https://epic.test"


def load_fixture(name: str) -> dict:
    return json.loads((FIX / name).read_text())


def epic_slot(start: str, length: int, openings: int = 1, held: str = "", unavailable: str = "", all_day: bool = False) -> dict:
    return {
        "StartTime": start,
        "Length": str(length),
        "AvailableOpenings": str(openings),
        "OriginalOpenings": str(openings),
        "OverbookOpenings": "0",
        "Public": True,
        "HeldTimeReason": held,
        "HeldTimeComment": "",
        "HeldTimeAllDay": all_day,
        "UnavailableTimeReason": unavailable,
        "UnavailableTimeComment": "",
    }


def epic_day(*slots: dict, date: str = "10/19/2026") -> dict:
    return {"Date": date, "ScheduleSlots": list(slots)}


def make_provider(
    provider_id: str = "prov-1",
    filter_id: EpicAppointmentFilterId = EpicAppointmentFilterId.NONE,
    appointment_types: list[AppointmentType] | None = None,
    departments: list[EpicDepartment] | None = None,
    **kwargs,
) -> Provider:
    return Provider(
        provider_id=provider_id,
        name=kwargs.pop("name", "Dr. Jane Example"),
        epic_provider_id=kwargs.pop("epic_provider_id", f"E-{provider_id}"),
        epic_provider_id_type="EXTERNAL",
        epic_appointment_filter_id=filter_id,
        appointment_types=appointment_types if appointment_types is not None else [
            AppointmentType(appointment_type_id="npv", name="New patient", duration_minutes=60, epic_visit_type_id="1001", epic_visit_type_id_type="EXTERNAL"),
            AppointmentType(appointment_type_id="rpv", name="Return patient", duration_minutes=30, epic_visit_type_id="1002", epic_visit_type_id_type="EXTERNAL"),
        ],
        departments=departments if departments is not None else [
            EpicDepartment(epic_department_id="dept-1", department_id="10501101", department_id_type="EXTERNAL", name="Psychiatry"),
        ],
        **kwargs,
    )


class FakeGateway:
    """Stands in for Epic. Outcomes are keyed by (department, visit type[, date])."""

    def __init__(self, responses=None, default=None, delay: float = 0.0):
        self.responses = responses or {}
        self.default = default
        self.delay = delay
        self.requests = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, request):
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.responses.get(
                (request.department_id, request.visit_type_id, request.date),
                self.responses.get((request.department_id, request.visit_type_id), self.default),
            )
            if isinstance(outcome, Exception):
                raise outcome
            if outcome is None:
                raise AssertionError(f"Unexpected schedule request {request!r}")
            return parse_schedule_response(json.dumps(outcome))
        finally:
            self.in_flight -= 1


@pytest.fixture
def settings() -> EpicSettings:
    return EpicSettings(
        base_url=f"{BASE}/interconnect",
        client_id="dummy",
        client_secret="dummy",
        user_id="SCHEDULER",
        user_id_type="EXTERNAL",
        backoff_seconds=0,
        max_concurrency=4,
    )
