"""Wire models for the site's events data files.

Field names are snake_case in Python and camelCase on the wire
(``locationId``, ``excludedDates``).  Keys the scheduler does not know about
are kept (``extra="allow"``) so bot-owned fields survive a scheduler write.
Optional fields are ``None`` in Python and omitted from the JSON.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sitekeeper.core.recurrence import parse_time


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON shape stored in the data files."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ConcreteEvent(_WireModel):
    """One dated occurrence at a location."""

    location_id: str = Field(alias="locationId")
    when: str = Field(alias="datetime")
    about: str | None = None

    @field_validator("when")
    @classmethod
    def _check_when(cls, value: str) -> str:
        parse_local_datetime(value)
        return value

    @property
    def starts_at(self) -> datetime:
        return parse_local_datetime(self.when)

    @property
    def key(self) -> tuple[str, datetime]:
        """Identity of the occurrence: location plus start time."""
        return (self.location_id, self.starts_at)


class RecurrenceRule(_WireModel):
    """A weekly template that the scheduler turns into concrete events."""

    name: str = ""
    location_id: str = Field(alias="locationId")
    weekday: int = Field(ge=0, le=6)
    time: str
    enabled: bool = False
    excluded_dates: list[str] = Field(default_factory=list, alias="excludedDates")
    about: str | None = None

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        parse_time(value)
        return value

    @field_validator("excluded_dates", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def label(self) -> str:
        return self.name or self.location_id


def parse_local_datetime(value: str) -> datetime:
    """Parse a stored event timestamp as naive local wall time.

    Offsets, when present, are dropped: the data files hold local times.
    """
    return datetime.fromisoformat(value).replace(tzinfo=None)


def parse_calendar_date(value: str) -> date:
    """Parse the calendar date at the start of an ISO date or datetime string."""
    return date.fromisoformat(value.strip()[:10])


def format_local_datetime(moment: datetime) -> str:
    """Render a timestamp the way event datetimes are stored."""
    return moment.replace(tzinfo=None, microsecond=0).isoformat(timespec="seconds")


def split_events(raw: Any) -> tuple[list[ConcreteEvent], list[Any]]:
    """Validate the events document entry by entry.

    Returns the valid events and, separately, the raw entries that failed
    validation, in document order.

    Raises:
        ValueError: If *raw* is not a JSON array
    """
    if not isinstance(raw, list):
        raise ValueError(f"Events document must be a JSON array, got {type(raw).__name__}")
    events: list[ConcreteEvent] = []
    invalid: list[Any] = []
    for item in raw:
        try:
            events.append(ConcreteEvent.model_validate(item))
        except ValidationError:
            invalid.append(item)
    return events, invalid
