import datetime as dt, json
import pytest
from epic_schedule_adapter.config import EpicSettings, load_run_config
from epic_schedule_adapter.errors import ConfigurationError
from epic_schedule_adapter.models import EpicAppointmentFilterId

RUN_CONFIG = {
    "start_date": "2026-10-19",
    "end_date": "2026-10-23",
    "destination_csv_file": "schedule.csv",
    "providers": [
        {
            "provider_id": "prov-1",
            "name": "Dr. Jane Example",
            "epic_provider_id": "E1001",
            "epic_provider_id_type": "EXTERNAL",
            "time_zone": "America/New_York",
            "epic_appointment_filter_id": "VISIT_TYPE",
            "appointment_types": [
                {"appointment_type_id": "npv", "duration_minutes": 60, "epic_visit_type_id": "1001", "epic_visit_type_id_type": "EXTERNAL"}
            ],
            "departments": [
                {"epic_department_id": "dept-1", "department_id": "10501101", "department_id_type": "EXTERNAL", "name": "Psychiatry"}
            ],
        }
    ],
}


def write_config(tmp_path, data) -> str:
    path = tmp_path / "run.json"
    path.write_text(json.dumps(data) if isinstance(data, dict) else data)
    return str(path)


def test_load_run_config(tmp_path):
    config = load_run_config(write_config(tmp_path, RUN_CONFIG))

    assert config.start_date == dt.date(2026, 10, 19)
    assert config.end_date == dt.date(2026, 10, 23)
    assert config.destination_csv_file == "schedule.csv"
    provider = config.providers[0]
    assert provider.epic_appointment_filter_id is EpicAppointmentFilterId.VISIT_TYPE
    assert provider.appointment_types[0].scheduling_system_id == "EPIC"
    assert provider.departments[0].department_id == "10501101"


def test_missing_run_config(tmp_path):
    with pytest.raises(ConfigurationError):
        load_run_config(tmp_path / "nope.json")


def test_run_config_must_be_json(tmp_path):
    with pytest.raises(ConfigurationError):
        load_run_config(write_config(tmp_path, "{not json"))


def test_run_config_rejects_reversed_dates(tmp_path):
    with pytest.raises(ConfigurationError):
        load_run_config(write_config(tmp_path, {**RUN_CONFIG, "start_date": "2026-10-24"}))


def test_run_config_rejects_unknown_time_zone(tmp_path):
    provider = {**RUN_CONFIG["providers"][0], "time_zone": "Mars/Olympus_Mons"}
    with pytest.raises(ConfigurationError):
        load_run_config(write_config(tmp_path, {**RUN_CONFIG, "providers": [provider]}))


def test_run_config_requires_provider_identifiers(tmp_path):
    provider = {k: v for k, v in RUN_CONFIG["providers"][0].items() if k != "epic_provider_id"}
    with pytest.raises(ConfigurationError):
        load_run_config(write_config(tmp_path, {**RUN_CONFIG, "providers": [provider]}))


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("EPIC_BASE_URL", "https://epic.test/interconnect")
    monkeypatch.delenv("EPIC_TOKEN_URL", raising=False)
    monkeypatch.setenv("EPIC_CLIENT_ID", "client")
    monkeypatch.setenv("EPIC_USER_ID", "SCHEDULER")
    monkeypatch.setenv("EPIC_USER_ID_TYPE", "EXTERNAL")
    monkeypatch.setenv("EPIC_MAX_ATTEMPTS", "5")

    settings = EpicSettings.from_env()

    assert settings.resolved_token_url == "https://epic.test/interconnect/oauth2/token"
    assert settings.schedule_url.startswith("https://epic.test/interconnect/api/epic/")
    assert settings.max_attempts == 5
    assert settings.require_user() == ("SCHEDULER", "EXTERNAL")


def test_settings_from_env_rejects_bad_numbers(monkeypatch):
    monkeypatch.setenv("EPIC_MAX_ATTEMPTS", "several")
    with pytest.raises(ConfigurationError):
        EpicSettings.from_env()


def test_require_user():
    with pytest.raises(ConfigurationError):
        EpicSettings(user_id="SCHEDULER").require_user()
