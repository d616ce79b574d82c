"""Shared fixtures for the sitekeeper test suite."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from sitekeeper.config import SchedulerConfig
from sitekeeper.storage.documents import InMemoryDocumentStore

LONDON = ZoneInfo("Europe/London")
EVENTS_PATH = "data/times.json"
RULES_PATH = "data/repeating-events.json"


def fixed_clock(*args: int):
    """Clock returning a fixed Europe/London time."""
    moment = datetime(*args, tzinfo=LONDON)
    return lambda: moment


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig()


@pytest.fixture
def audit() -> AsyncMock:
    """Stand-in for AuditLogger; every method is an AsyncMock."""
    return AsyncMock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore({EVENTS_PATH: [], RULES_PATH: []})
