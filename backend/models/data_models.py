"""
Data Models (DTOs - Data Transfer Objects)

This module contains all dataclass definitions used throughout the application.
Aggregates are frozen: once a build finishes nothing mutates them, and the
filter layer derives new view objects instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple

ALL_APPLICATIONS = "all"


@dataclass(frozen=True)
class ParseOutcome:
    """Result of trying to read the whole input as one JSON array"""
    kind: str  # "array" or "failure"
    items: List[Any] = field(default_factory=list)

    @property
    def is_array(self) -> bool:
        return self.kind == "array"


@dataclass(frozen=True)
class UserEvent:
    """One qualifying SSO event, as kept in a user's event log"""
    timestamp: str
    app_name: str
    app_display_label: str
    at: Optional[datetime] = None  # parsed timestamp, None when unparsable


@dataclass(frozen=True)
class UserAggregate:
    """Per-user accumulator keyed by initiated_by.id"""
    user_id: str
    username: Optional[str]
    last_seen: Optional[str]
    apps_used: FrozenSet[str]
    events: Tuple[UserEvent, ...]

    @property
    def app_count(self) -> int:
        return len(self.apps_used)


@dataclass(frozen=True)
class ApplicationAggregate:
    """Per-application accumulator keyed by resolved label"""
    usage_count: int
    unique_users: FrozenSet[str]


@dataclass(frozen=True)
class DateRange:
    """Calendar days (UTC) covering every qualifying timestamp"""
    min: date
    max: date


@dataclass(frozen=True)
class AggregationResult:
    """Everything one build produces. Read-only."""
    total_records: int
    total_users: int
    date_range: Optional[DateRange]
    per_application_counts: Mapping[str, int]
    per_user_aggregates: Mapping[str, UserAggregate]
    per_application_aggregates: Mapping[str, ApplicationAggregate]


@dataclass(frozen=True)
class FilterCriteria:
    """Query parameters for the filter layer"""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    application_label: str = ALL_APPLICATIONS
    username_substring: Optional[str] = None

    @property
    def has_date_bounds(self) -> bool:
        return self.start_date is not None and self.end_date is not None


@dataclass(frozen=True)
class FilteredUser:
    """A user that passed the filters, with in-range app usage"""
    user: UserAggregate
    apps_in_range: Tuple[str, ...]

    @property
    def app_count_in_range(self) -> int:
        return len(self.apps_in_range)


@dataclass(frozen=True)
class FilteredApplication:
    """Usage of one application within the filters"""
    name: str
    user_count: int
    session_count: int
    unique_users: FrozenSet[str]


@dataclass(frozen=True)
class Summary:
    """Headline numbers for the summary page"""
    total_records: int
    active_users: int
    application_count: int
    date_range: Optional[DateRange]
    filtered_user_count: int
    filtered_user_share: Optional[float]
    top_applications: Tuple[FilteredApplication, ...]


@dataclass
class IngestStatus:
    """Progress of the current ingest, polled by the UI"""
    phase: str = "idle"  # idle, parsing, aggregating, done, failed
    progress: int = 0
    error: Optional[str] = None
