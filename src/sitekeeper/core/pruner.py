"""Retention pruning for the events and recurrence rules documents.

Rules are handled as raw JSON objects: pruning rewrites only the
``excludedDates`` array of a rule and leaves everything else, including rules
the materializer would reject, byte-for-byte intact.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sitekeeper.core.models import ConcreteEvent, parse_calendar_date

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    kept: list[ConcreteEvent]
    removed_count: int


@dataclass
class ExclusionPruneResult:
    rules: list[Any]
    removed_count: int


def prune_events(
    events: Sequence[ConcreteEvent], now: datetime, retention_days: int
) -> PruneResult:
    """Drop events that started before ``now - retention_days``."""
    cutoff = now - timedelta(days=retention_days)
    kept = [event for event in events if event.starts_at >= cutoff]
    return PruneResult(kept=kept, removed_count=len(events) - len(kept))


def _is_elapsed(value: Any, today: date) -> bool:
    try:
        return parse_calendar_date(value) < today
    except (AttributeError, TypeError, ValueError):
        logger.warning("Keeping unparseable excluded date %r", value)
        return False


def prune_exclusions(rules: Sequence[Any], today: date) -> ExclusionPruneResult:
    """Drop ``excludedDates`` entries strictly before *today*.

    Rules without a list of excluded dates are returned unchanged.
    """
    updated: list[Any] = []
    removed = 0
    for rule in rules:
        dates = rule.get("excludedDates") if isinstance(rule, Mapping) else None
        if not isinstance(dates, list):
            updated.append(rule)
            continue

        remaining = [value for value in dates if not _is_elapsed(value, today)]
        if len(remaining) == len(dates):
            updated.append(rule)
            continue

        removed += len(dates) - len(remaining)
        updated.append({**rule, "excludedDates": remaining})

    return ExclusionPruneResult(rules=updated, removed_count=removed)
