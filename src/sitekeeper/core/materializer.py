"""Recurring-event materialization.

Turns the recurrence rules document into concrete dated events for an
upcoming window and works out the add/remove changeset against the events
document.  Pure: no I/O, ``now`` is passed in.

Exclusions are retroactive.  An event at a rule's location on one of its
excluded dates is retracted even if it was materialized before the date was
excluded.  Exclusions are pooled per location before any rule is expanded, so
two enabled rules sharing a location cannot keep re-adding and removing each
other's occurrences on successive runs.

A rule that cannot be parsed or expanded is skipped and reported in
:attr:`Changeset.skipped_rules`; the remaining rules are still processed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from sitekeeper.core.models import (
    ConcreteEvent,
    RecurrenceRule,
    format_local_datetime,
    parse_calendar_date,
)
from sitekeeper.core.recurrence import expand

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventDetail:
    """Human-facing description of one added or removed occurrence."""

    name: str
    location_id: str
    starts_at: datetime

    @property
    def formatted_date(self) -> str:
        return f"{self.starts_at:%A} {self.starts_at.day} {self.starts_at:%B %Y}"

    @property
    def formatted_time(self) -> str:
        return f"{self.starts_at:%H:%M}"


@dataclass(frozen=True)
class SkippedRule:
    """A rule that was left out of this run and why."""

    index: int
    name: str
    reason: str


@dataclass
class Changeset:
    """Outcome of one materialization pass."""

    to_add: list[ConcreteEvent] = field(default_factory=list)
    to_remove: list[ConcreteEvent] = field(default_factory=list)
    merged_events: list[ConcreteEvent] = field(default_factory=list)
    added_details: list[EventDetail] = field(default_factory=list)
    removed_details: list[EventDetail] = field(default_factory=list)
    skipped_rules: list[SkippedRule] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def commit_message(self) -> str:
        parts = []
        if self.to_add:
            parts.append(f"add {len(self.to_add)} repeating event(s)")
        if self.to_remove:
            parts.append(f"remove {len(self.to_remove)} excluded event(s)")
        return f"Auto-process repeating events: {', '.join(parts)}"


def _rule_name(raw: Any, index: int) -> str:
    if isinstance(raw, RecurrenceRule):
        return raw.label
    if isinstance(raw, Mapping):
        return str(raw.get("name") or raw.get("locationId") or f"rule #{index}")
    return f"rule #{index}"


def _excluded_dates(rule: RecurrenceRule) -> set[date]:
    dates: set[date] = set()
    for value in rule.excluded_dates:
        try:
            dates.add(parse_calendar_date(value))
        except (TypeError, ValueError):
            logger.warning("Ignoring unparseable excluded date %r on rule %s", value, rule.label)
    return dates


def materialize(
    rules: Sequence[RecurrenceRule | Mapping[str, Any]],
    existing_events: Sequence[ConcreteEvent],
    now: datetime,
    advance_window_days: int,
) -> Changeset:
    """Compute the events to add and retract for the window ``(now, now + days]``.

    Args:
        rules: Recurrence rules, as models or raw JSON objects
        existing_events: Current contents of the events document
        now: Local wall-clock time the window starts at (naive)
        advance_window_days: How many days ahead to materialize

    Returns:
        A :class:`Changeset`; ``merged_events`` is the full sorted events list
        to persist when the changeset is not empty.
    """
    changeset = Changeset()
    window_end = now + timedelta(days=advance_window_days)

    active: list[tuple[int, RecurrenceRule]] = []
    for index, raw in enumerate(rules):
        try:
            rule = raw if isinstance(raw, RecurrenceRule) else RecurrenceRule.model_validate(raw)
        except ValidationError as exc:
            name = _rule_name(raw, index)
            logger.warning("Skipping invalid recurrence rule %s: %s", name, exc)
            changeset.skipped_rules.append(SkippedRule(index, name, str(exc)))
            continue
        if rule.enabled:
            active.append((index, rule))

    excluded_by_location: dict[str, set[date]] = {}
    names_by_location: dict[str, str] = {}
    for _, rule in active:
        excluded_by_location.setdefault(rule.location_id, set()).update(_excluded_dates(rule))
        names_by_location.setdefault(rule.location_id, rule.label)

    # Retraction pass
    kept: list[ConcreteEvent] = []
    for event in existing_events:
        excluded = excluded_by_location.get(event.location_id)
        if excluded and event.starts_at.date() in excluded:
            changeset.to_remove.append(event)
            changeset.removed_details.append(
                EventDetail(
                    names_by_location[event.location_id], event.location_id, event.starts_at
                )
            )
            logger.info("Removed excluded event: %s on %s", event.location_id, event.when)
        else:
            kept.append(event)

    # Expansion pass
    present = {event.key for event in kept}
    for index, rule in active:
        try:
            occurrences = expand(now, window_end, rule.weekday, rule.time)
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping recurrence rule %s: %s", rule.label, exc)
            changeset.skipped_rules.append(SkippedRule(index, rule.label, str(exc)))
            continue

        excluded = excluded_by_location.get(rule.location_id, set())
        for occurrence in occurrences:
            if occurrence.date() in excluded:
                continue
            key = (rule.location_id, occurrence)
            if key in present:
                continue
            event = ConcreteEvent(
                location_id=rule.location_id,
                when=format_local_datetime(occurrence),
                about=rule.about or None,
            )
            present.add(key)
            changeset.to_add.append(event)
            changeset.added_details.append(EventDetail(rule.label, rule.location_id, occurrence))
            logger.info("Added repeating event: %s on %s", rule.label, event.when)

    changeset.merged_events = sorted([*kept, *changeset.to_add], key=lambda e: e.starts_at)
    return changeset


def format_audit_message(changeset: Changeset, weeks_ahead: int) -> str:
    """Render the audit-channel summary of a materialization run."""
    parts: list[str] = []

    if changeset.added_details:
        parts.append(
            f"Added {len(changeset.added_details)} repeating events for {weeks_ahead} weeks ahead:"
        )
        parts.append(
            "\n".join(
                f"• {d.name} - {d.formatted_date} at {d.formatted_time}"
                for d in changeset.added_details
            )
        )

    if changeset.removed_details:
        if parts:
            parts.append("")
        parts.append(f"Removed {len(changeset.removed_details)} excluded events:")
        parts.append(
            "\n".join(f"• {d.name} - {d.formatted_date}" for d in changeset.removed_details)
        )

    return "\n\n".join(parts)
