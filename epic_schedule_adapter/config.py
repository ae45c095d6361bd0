"""Settings for talking to Epic and for batch reconciliation runs.

Epic connection settings come from the environment (a local .env file is
honoured). The providers to reconcile and the date range come from a JSON run
config, one file per batch job.
"""
from __future__ import annotations

import datetime as dt
import json
import os
import pathlib

from dotenv import load_dotenv
from pydantic import BaseModel, PositiveInt, ValidationError

from .errors import ConfigurationError
from .models import Provider

load_dotenv()

_DEFAULT_BASE_URL = "https://sandbox.epic.example.org/interconnect"
_DEFAULT_SCHEDULE_PATH = "/api/epic/2012/Scheduling/Provider/GetProviderSchedule/Schedule"


class EpicSettings(BaseModel):
    base_url: str = _DEFAULT_BASE_URL
    token_url: str | None = None  # defaults to {base_url}/oauth2/token
    schedule_path: str = _DEFAULT_SCHEDULE_PATH
    client_id: str | None = None
    client_secret: str | None = None
    user_id: str | None = None
    user_id_type: str | None = None
    timeout_seconds: float = 15
    max_attempts: PositiveInt = 3
    backoff_seconds: float = 1.0
    max_concurrency: PositiveInt = 8

    @classmethod
    def from_env(cls) -> "EpicSettings":
        base_url = os.getenv("EPIC_BASE_URL", _DEFAULT_BASE_URL)
        try:
            return cls(
                base_url=base_url,
                token_url=os.getenv("EPIC_TOKEN_URL", f"{base_url}/oauth2/token"),
                schedule_path=os.getenv("EPIC_SCHEDULE_PATH", _DEFAULT_SCHEDULE_PATH),
                client_id=os.getenv("EPIC_CLIENT_ID"),
                client_secret=os.getenv("EPIC_CLIENT_SECRET"),
                user_id=os.getenv("EPIC_USER_ID"),
                user_id_type=os.getenv("EPIC_USER_ID_TYPE"),
                timeout_seconds=float(os.getenv("EPIC_TIMEOUT_SECONDS", "15")),
                max_attempts=int(os.getenv("EPIC_MAX_ATTEMPTS", "3")),
                backoff_seconds=float(os.getenv("EPIC_BACKOFF_SECONDS", "1.0")),
                max_concurrency=int(os.getenv("EPIC_MAX_CONCURRENCY", "8")),
            )
        except (ValueError, ValidationError) as e:
            raise ConfigurationError(f"Invalid Epic settings in environment: {e}") from e

    @property
    def resolved_token_url(self) -> str:
        return self.token_url or f"{self.base_url}/oauth2/token"

    @property
    def schedule_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.schedule_path}"

    def require_user(self) -> tuple[str, str]:
        """Every schedule lookup is made on behalf of an Epic user."""
        if not self.user_id or not self.user_id_type:
            raise ConfigurationError("EPIC_USER_ID and EPIC_USER_ID_TYPE are required")
        return self.user_id, self.user_id_type


class ScheduleRunConfig(BaseModel):
    start_date: dt.date
    end_date: dt.date
    providers: list[Provider]
    destination_csv_file: str | None = None


def load_run_config(path: str | os.PathLike) -> ScheduleRunConfig:
    file = pathlib.Path(path)
    if not file.exists():
        raise ConfigurationError(f"No such file {file.absolute()}")

    try:
        config = ScheduleRunConfig.model_validate(json.loads(file.read_text(encoding="utf-8")))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Run config {file} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise ConfigurationError(f"Run config {file} is invalid: {e}") from e

    if config.start_date > config.end_date:
        raise ConfigurationError(f"Start date {config.start_date} is after end date {config.end_date}")
    return config
