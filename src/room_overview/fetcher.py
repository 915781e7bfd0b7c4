"""Upstream fetch contract and the ChurchTools implementation.

A fetch returns the complete, authoritative booking set the upstream service
reports for a time window, never a delta. Fetchers mutate no local state, so
a cancelled or failed fetch simply discards its partial result.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime, tzinfo
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from room_overview.errors import (
    DuplicateBookingError,
    MalformedResponseError,
    UpstreamNetworkError,
    UpstreamUnauthorizedError,
)
from room_overview.models import Booking, TimeWindow

logger = logging.getLogger(__name__)

CHURCHTOOLS_BOOKINGS_PATH = "/api/bookings"
# ChurchTools booking status "approved".
APPROVED_STATUS_ID = 2
DEFAULT_TIMEOUT_SECONDS = 20.0
_TRANSIENT_STATUS_CODES = {429}
_UNAUTHORIZED_STATUS_CODES = {401, 403}


class UpstreamFetcher(abc.ABC):
    """Provider contract for retrieving the upstream booking set."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Stable provider name used in logs and status."""
        ...

    @abc.abstractmethod
    async def fetch(self, window: TimeWindow) -> list[Booking]:
        """Return every upstream booking intersecting *window*.

        Raises
        ------
        UpstreamNetworkError
            Connection failure, timeout or a transient upstream status.
        UpstreamUnauthorizedError
            The credentials were rejected.
        MalformedResponseError
            The response did not match the expected schema.
        """
        ...

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release provider resources."""
        ...


# ---------------------------------------------------------------------------
# ChurchTools response schema
# ---------------------------------------------------------------------------


class _ResourceRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class _BookingBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    caption: str = ""
    resource: _ResourceRef

    @field_validator("caption", mode="before")
    @classmethod
    def _coerce_caption(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()


class _BookingCalculated(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")


class _BookingData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    base: _BookingBase
    calculated: _BookingCalculated


class _BookingsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: list[_BookingData]


# ---------------------------------------------------------------------------
# ChurchTools fetcher
# ---------------------------------------------------------------------------


def _day_range(window: TimeWindow, tz: tzinfo) -> tuple[date, date]:
    """Local dates covering *window*; the bookings endpoint filters by whole days."""
    return window.start.astimezone(tz).date(), window.end.astimezone(tz).date()


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("message", "translatedMessage", "error"):
            message = payload.get(key)
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"


class ChurchToolsFetcher(UpstreamFetcher):
    """Fetch approved bookings for the configured rooms from ChurchTools."""

    def __init__(
        self,
        *,
        host: str,
        login_token: str,
        resource_ids: Iterable[int],
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        timezone: tzinfo = UTC,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        normalized_host = host.strip().removeprefix("https://").rstrip("/")
        if not normalized_host:
            raise ValueError("host must be a non-empty string")
        if not login_token.strip():
            raise ValueError("login_token must be a non-empty string")
        self._base_url = f"https://{normalized_host}"
        self._login_token = login_token.strip()
        self._resource_ids = sorted(set(resource_ids))
        self._timezone = timezone
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds, connect=10.0))
        )

    @property
    def name(self) -> str:
        return "churchtools"

    async def fetch(self, window: TimeWindow) -> list[Booking]:
        start_day, end_day = _day_range(window, self._timezone)
        params: list[tuple[str, str]] = [("resource_ids[]", str(i)) for i in self._resource_ids]
        params.append(("from", start_day.isoformat()))
        params.append(("to", end_day.isoformat()))
        params.append(("status_ids[]", str(APPROVED_STATUS_ID)))

        try:
            response = await self._http_client.get(
                f"{self._base_url}{CHURCHTOOLS_BOOKINGS_PATH}",
                params=params,
                headers={
                    "Accept": "application/json",
                    "Authorization": f"Login {self._login_token}",
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("There was a problem getting a response from ChurchTools: %s", exc)
            raise UpstreamNetworkError(f"ChurchTools request failed: {exc}") from exc

        if response.status_code in _UNAUTHORIZED_STATUS_CODES:
            raise UpstreamUnauthorizedError(
                status_code=response.status_code,
                message=_safe_error_message(response),
            )
        if response.status_code in _TRANSIENT_STATUS_CODES or response.status_code >= 500:
            raise UpstreamNetworkError(
                f"ChurchTools returned {response.status_code}: {_safe_error_message(response)}"
            )
        if response.status_code < 200 or response.status_code >= 300:
            raise MalformedResponseError(
                f"Unexpected ChurchTools status {response.status_code}: "
                f"{_safe_error_message(response)}"
            )

        bookings = self._parse(response)
        logger.debug(
            "Fetched %d booking(s) from ChurchTools for %s..%s",
            len(bookings),
            start_day,
            end_day,
        )
        return bookings

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    def _parse(self, response: httpx.Response) -> list[Booking]:
        try:
            payload = _BookingsResponse.model_validate_json(response.content)
        except ValidationError as exc:
            logger.warning("There was an error parsing the response from ChurchTools: %s", exc)
            logger.debug("The complete text received was: %s", response.text)
            raise MalformedResponseError(f"Cannot deserialize ChurchTools response: {exc}") from exc

        bookings: dict[int, Booking] = {}
        for item in payload.data:
            try:
                booking = Booking(
                    booking_id=item.base.id,
                    title=item.base.caption,
                    resource_id=item.base.resource.id,
                    start_time=item.calculated.start_date,
                    end_time=item.calculated.end_date,
                )
            except ValidationError as exc:
                raise MalformedResponseError(
                    f"ChurchTools booking {item.base.id} is invalid: {exc}"
                ) from exc

            previous = bookings.get(booking.booking_id)
            if previous is not None and previous != booking:
                raise MalformedResponseError(str(DuplicateBookingError(booking.booking_id)))
            bookings[booking.booking_id] = booking
        return list(bookings.values())
