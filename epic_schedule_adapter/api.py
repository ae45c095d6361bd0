import datetime as dt
import os

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .client import ScheduleGateway, make_gateway
from .config import EpicSettings
from .errors import ConfigurationError
from .export import collect_schedule_rows, schedule_csv_text
from .models import Provider, ProviderAvailabilityResult, ReconciliationReport
from .orchestrator import generate_provider_availability, reconcile_schedules


class ReconcileRequest(BaseModel):
    start_date: dt.date
    end_date: dt.date
    providers: list[Provider]


class ProviderAvailabilityRequest(BaseModel):
    date: dt.date
    provider: Provider


SERVICE_KEY = os.getenv("SERVICE_API_KEY", "")
# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)

app = FastAPI(title="Epic Schedule Adapter Service")


def verify_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token provided via Authorization header"""
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != SERVICE_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_settings() -> EpicSettings:
    try:
        return EpicSettings.from_env()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))


def get_gateway(settings: EpicSettings = Depends(get_settings)) -> ScheduleGateway:
    try:
        return make_gateway(settings)
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/availability/reconcile", dependencies=[Depends(verify_key)], response_model=ReconciliationReport)
async def reconcile(
    req: ReconcileRequest,
    settings: EpicSettings = Depends(get_settings),
    gateway: ScheduleGateway = Depends(get_gateway),
):
    """Bookable appointments for every provider and date in the range, plus any units that failed."""
    try:
        return await reconcile_schedules(req.providers, req.start_date, req.end_date, settings=settings, gateway=gateway)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.post("/availability/provider", dependencies=[Depends(verify_key)], response_model=ProviderAvailabilityResult)
async def provider_availability(
    req: ProviderAvailabilityRequest,
    settings: EpicSettings = Depends(get_settings),
    gateway: ScheduleGateway = Depends(get_gateway),
):
    try:
        return await generate_provider_availability(req.provider, req.date, settings=settings, gateway=gateway)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.post("/schedule/export", dependencies=[Depends(verify_key)])
async def export_schedule(
    req: ReconcileRequest,
    settings: EpicSettings = Depends(get_settings),
    gateway: ScheduleGateway = Depends(get_gateway),
):
    """Raw Epic schedule slots as CSV, one row per slot."""
    try:
        rows = await collect_schedule_rows(req.providers, req.start_date, req.end_date, settings=settings, gateway=gateway)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    filename = f"provider_schedule_{req.start_date.isoformat()}_{req.end_date.isoformat()}.csv"
    return Response(
        content=schedule_csv_text(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
