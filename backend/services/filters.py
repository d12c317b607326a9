"""
Query Layer - Re-filters a built AggregationResult

Every function here is a pure function of (result, criteria). Nothing touches
the raw records again; views are derived from the per-user event logs.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from config import CHART_TOP_N, TABLE_TOP_N
from models.data_models import (
    ALL_APPLICATIONS,
    AggregationResult,
    FilterCriteria,
    FilteredApplication,
    FilteredUser,
    Summary,
    UserEvent,
)
from utils.helpers import day_end, day_start

logger = logging.getLogger(__name__)


def in_date_range(at: Optional[datetime], criteria: FilterCriteria) -> bool:
    """start <= at <= end-of-day(end). Always true unless both bounds are set."""
    if not criteria.has_date_bounds:
        return True
    if at is None:
        return False
    return day_start(criteria.start_date) <= at <= day_end(criteria.end_date)


def matches_application(event: UserEvent, label: str) -> bool:
    if label == ALL_APPLICATIONS:
        return True
    return event.app_name == label or event.app_display_label == label


def filter_users(result: AggregationResult, criteria: FilterCriteria) -> List[FilteredUser]:
    """Users with in-range activity matching the app and username filters"""
    needle = (criteria.username_substring or "").lower()
    out: List[FilteredUser] = []

    for user in result.per_user_aggregates.values():
        if needle and needle not in (user.username or "").lower():
            continue

        in_range = [e for e in user.events if in_date_range(e.at, criteria)]
        if not in_range:
            continue
        if not any(matches_application(e, criteria.application_label) for e in in_range):
            continue

        apps_in_range = tuple(dict.fromkeys(e.app_name for e in in_range))
        out.append(FilteredUser(user=user, apps_in_range=apps_in_range))

    return out


def filter_applications(result: AggregationResult, criteria: FilterCriteria) -> List[FilteredApplication]:
    """
    Per-application usage inside the filters, sorted by unique users.
    Rebuilt from user event logs since the stored per-app aggregates are
    unfiltered. Ties keep the order labels were first met.
    """
    users: Dict[str, Set[str]] = {}
    sessions: Dict[str, int] = {}

    for user in result.per_user_aggregates.values():
        for event in user.events:
            if not in_date_range(event.at, criteria):
                continue
            if not matches_application(event, criteria.application_label):
                continue
            label = event.app_display_label
            users.setdefault(label, set()).add(user.user_id)
            sessions[label] = sessions.get(label, 0) + 1

    apps = [
        FilteredApplication(
            name=label,
            user_count=len(members),
            session_count=sessions[label],
            unique_users=frozenset(members),
        )
        for label, members in users.items()
    ]
    apps.sort(key=lambda a: a.user_count, reverse=True)
    return apps


def default_criteria(result: AggregationResult) -> FilterCriteria:
    """Filters reset to the whole dataset"""
    if result.date_range is None:
        return FilterCriteria()
    return FilterCriteria(start_date=result.date_range.min, end_date=result.date_range.max)


def application_options(result: AggregationResult) -> List[str]:
    """Sorted application labels for the app selector"""
    return sorted(result.per_application_counts)


def top_applications(apps: List[FilteredApplication], limit: int = CHART_TOP_N) -> List[FilteredApplication]:
    return apps[:limit]


def summarize(result: AggregationResult, criteria: FilterCriteria) -> Summary:
    return _summary(result, filter_users(result, criteria), filter_applications(result, criteria))


def _summary(result: AggregationResult, users, apps) -> Summary:
    share = None
    if result.total_users > 0:
        share = round(len(users) / result.total_users * 100, 1)

    return Summary(
        total_records=result.total_records,
        active_users=result.total_users,
        application_count=len(result.per_application_counts),
        date_range=result.date_range,
        filtered_user_count=len(users),
        filtered_user_share=share,
        top_applications=tuple(top_applications(list(apps), TABLE_TOP_N)),
    )


class QueryCache:
    """
    Memoizes filter results for one AggregationResult.
    Keyed on the criteria; a new dataset needs a new cache.
    """

    def __init__(self, result: AggregationResult):
        self.result = result
        self._users: Dict[FilterCriteria, Tuple[FilteredUser, ...]] = {}
        self._apps: Dict[FilterCriteria, Tuple[FilteredApplication, ...]] = {}
        self.hits = 0
        self.misses = 0

    def users(self, criteria: FilterCriteria) -> Tuple[FilteredUser, ...]:
        cached = self._users.get(criteria)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        logger.debug("User filter cache miss for %s", criteria)
        cached = self._users[criteria] = tuple(filter_users(self.result, criteria))
        return cached

    def applications(self, criteria: FilterCriteria) -> Tuple[FilteredApplication, ...]:
        cached = self._apps.get(criteria)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        cached = self._apps[criteria] = tuple(filter_applications(self.result, criteria))
        return cached

    def summary(self, criteria: FilterCriteria) -> Summary:
        return _summary(self.result, self.users(criteria), self.applications(criteria))
