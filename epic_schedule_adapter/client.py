"""Async Epic client for provider schedule lookups.
Assumes OAuth2 client-credentials flow.

This is also the only place Epic's string-encoded numbers and 12-hour times
are parsed; everything downstream works with ScheduleSlot.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import functools
import json
import logging
import time
from typing import Awaitable, Callable

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from .config import EpicSettings
from .errors import ConfigurationError, MalformedScheduleError
from .models import ProviderScheduleRequest, ProviderScheduleResponse, ScheduleSlot, ScheduleSlotPayload

logger = logging.getLogger(__name__)

ScheduleGateway = Callable[[ProviderScheduleRequest], Awaitable[ProviderScheduleResponse]]

# client_id -> (token, expiry epoch seconds)
_TOKEN_CACHE: dict[str, tuple[str, float]] = {}
# serializes token refreshes across concurrent units
_TOKEN_LOCK = asyncio.Lock()


async def _get_token(settings: EpicSettings) -> str:
    """Fetch and cache bearer token until five minutes before it expires."""
    cached = _TOKEN_CACHE.get(settings.client_id or "")
    if cached and time.time() < cached[1]:
        return cached[0]

    async with _TOKEN_LOCK:
        cached = _TOKEN_CACHE.get(settings.client_id or "")
        if cached and time.time() < cached[1]:
            return cached[0]
        return await _fetch_token(settings)


async def _fetch_token(settings: EpicSettings) -> str:
    now = time.time()
    async with httpx.AsyncClient(http2=True, timeout=settings.timeout_seconds) as client:
        resp = await client.post(
            settings.resolved_token_url,
            data={"grant_type": "client_credentials"},
            auth=(settings.client_id, settings.client_secret),
        )
        resp.raise_for_status()
        data = resp.json()
        token = data["access_token"]
        # default expires_in 3600 seconds = 1 hour
        _TOKEN_CACHE[settings.client_id or ""] = (token, now + data.get("expires_in", 3600) - 300)
        return token


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    return isinstance(exc, httpx.TransportError)


async def _post_schedule(request: ProviderScheduleRequest, settings: EpicSettings) -> httpx.Response:
    headers = {
        "Authorization": f"Bearer {await _get_token(settings)}",
        "Epic-Client-ID": settings.client_id or "",
        "Accept": "application/json",
    }
    async with httpx.AsyncClient(http2=True, timeout=settings.timeout_seconds) as client:
        resp = await client.post(settings.schedule_url, headers=headers, json=request.to_epic_body())
        resp.raise_for_status()
        return resp


async def get_provider_schedule(request: ProviderScheduleRequest, *, settings: EpicSettings) -> ProviderScheduleResponse:
    """Call GetProviderSchedule, retrying timeouts, dropped connections and 5xx responses."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(settings.max_attempts),
        wait=wait_exponential(multiplier=settings.backoff_seconds, max=10),
        retry=retry_if_exception(_is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            resp = await _post_schedule(request, settings)

    return parse_schedule_response(resp.text)


def make_gateway(settings: EpicSettings) -> ScheduleGateway:
    if not settings.client_id or not settings.client_secret:
        raise ConfigurationError("EPIC_CLIENT_ID and EPIC_CLIENT_SECRET are required to call Epic")
    return functools.partial(get_provider_schedule, settings=settings)


# Parsing --------------------------------------------------------------------

def parse_schedule_response(body: str) -> ProviderScheduleResponse:
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise MalformedScheduleError("Epic schedule response is not JSON", raw_response=body) from e
    if not isinstance(payload, dict):
        raise MalformedScheduleError("Epic schedule response is not a JSON object", raw_response=body)

    try:
        return ProviderScheduleResponse.model_validate({**payload, "raw_json": body})
    except ValidationError as e:
        raise MalformedScheduleError(f"Unexpected Epic schedule response shape: {e}", raw_response=body) from e


def parse_time_am_pm(value: str) -> dt.time:
    """Parse Epic's 12-hour clock, e.g. "9:00 AM" -> 09:00."""
    try:
        return dt.datetime.strptime(value.strip().upper(), "%I:%M %p").time()
    except (AttributeError, ValueError) as e:
        raise MalformedScheduleError(f"Unable to parse time {value!r}") from e


def parse_int(value: str | None, field: str) -> int:
    # plain ASCII digits only; int() alone would also take "+30" or "1_5"
    text = value.strip() if isinstance(value, str) else ""
    if not (text.isascii() and text.isdecimal()):
        raise MalformedScheduleError(f"Unable to parse {field} {value!r} as an integer")
    return int(text, 10)


def _trim_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def slot_from_payload(payload: ScheduleSlotPayload) -> ScheduleSlot:
    # OriginalOpenings is reporting-only, so a missing value is read as zero rather than failing the unit
    original_openings = 0 if payload.original_openings is None else parse_int(payload.original_openings, "OriginalOpenings")
    try:
        return ScheduleSlot(
            start_time=parse_time_am_pm(payload.start_time),
            length_minutes=parse_int(payload.length, "Length"),
            available_openings=parse_int(payload.available_openings, "AvailableOpenings"),
            original_openings=original_openings,
            is_public=bool(payload.public),
            held_reason=_trim_to_none(payload.held_time_reason),
            held_comment=_trim_to_none(payload.held_time_comment),
            unavailable_reason=_trim_to_none(payload.unavailable_time_reason),
            unavailable_comment=_trim_to_none(payload.unavailable_time_comment),
            held_all_day=bool(payload.held_time_all_day),
        )
    except ValidationError as e:
        raise MalformedScheduleError(f"Invalid schedule slot starting {payload.start_time!r}: {e}") from e


def parse_schedule_slots(response: ProviderScheduleResponse) -> list[ScheduleSlot]:
    if response.schedule_slots is None:
        raise MalformedScheduleError("Unable to detect schedule slots in Epic response", raw_response=response.raw_json)

    slots = []
    for payload in response.schedule_slots:
        try:
            slots.append(slot_from_payload(payload))
        except MalformedScheduleError as e:
            e.raw_response = response.raw_json
            raise
    return slots
