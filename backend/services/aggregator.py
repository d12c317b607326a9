"""
Aggregator Class - Builds usage indexes from SSO event records

One pass over the records produces:
- the global user set
- per-application usage counts
- per-user aggregates (apps used, last seen, event log)
- per-application unique user sets

The pass is a fold over fixed-size batches. Between batches the coroutine
yields to the event loop and reports progress.
"""

import asyncio
import logging
from datetime import datetime
from functools import reduce
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set

from config import BATCH_SIZE
from models.data_models import (
    AggregationResult,
    ApplicationAggregate,
    DateRange,
    UserAggregate,
    UserEvent,
)
from utils.helpers import get_nested, parse_ts, percent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class _UserState:
    __slots__ = ("username", "last_seen", "last_seen_at", "apps", "events")

    def __init__(self, username: Optional[str]):
        self.username = username
        self.last_seen: Optional[str] = None
        self.last_seen_at: Optional[datetime] = None
        self.apps: Set[str] = set()
        self.events: List[UserEvent] = []


class _AppState:
    __slots__ = ("usage_count", "users")

    def __init__(self):
        self.usage_count = 0
        self.users: Set[str] = set()


class AggregateState:
    """Mutable accumulator owned by a single build"""

    def __init__(self):
        self.records = 0
        self.user_ids: Set[str] = set()
        self.users: Dict[str, _UserState] = {}
        self.apps: Dict[str, _AppState] = {}
        self.min_at: Optional[datetime] = None
        self.max_at: Optional[datetime] = None

    def freeze(self) -> AggregationResult:
        users = {
            user_id: UserAggregate(
                user_id=user_id,
                username=u.username,
                last_seen=u.last_seen,
                apps_used=frozenset(u.apps),
                events=tuple(u.events),
            )
            for user_id, u in self.users.items()
        }
        apps = {
            label: ApplicationAggregate(usage_count=a.usage_count, unique_users=frozenset(a.users))
            for label, a in self.apps.items()
        }

        date_range = None
        if self.min_at is not None and self.max_at is not None:
            date_range = DateRange(min=self.min_at.date(), max=self.max_at.date())

        return AggregationResult(
            total_records=self.records,
            total_users=len(self.user_ids),
            date_range=date_range,
            per_application_counts=MappingProxyType({k: a.usage_count for k, a in apps.items()}),
            per_user_aggregates=MappingProxyType(users),
            per_application_aggregates=MappingProxyType(apps),
        )


def resolve_label(application: Dict[str, Any]) -> str:
    """display_label if present, else name"""
    return application.get("display_label") or application.get("name")


def step(state: AggregateState, record: Any) -> AggregateState:
    """Fold one record into the accumulator"""
    state.records += 1
    if not isinstance(record, dict) or record.get("sso_token_success") is not True:
        return state

    raw_ts = record.get("timestamp")
    at = parse_ts(raw_ts)
    if at is not None:
        if state.min_at is None or at < state.min_at:
            state.min_at = at
        if state.max_at is None or at > state.max_at:
            state.max_at = at

    user_id = get_nested(record, ("initiated_by", "id"))
    if not user_id:
        return state
    user_id = str(user_id)
    state.user_ids.add(user_id)

    application = record.get("application")
    app_name = get_nested(record, ("application", "name"))
    if not raw_ts or not app_name:
        return state

    user = state.users.get(user_id)
    if user is None:
        username = get_nested(record, ("initiated_by", "username"))
        user = state.users[user_id] = _UserState(str(username) if username is not None else None)

    if at is not None and (user.last_seen_at is None or at > user.last_seen_at):
        user.last_seen_at = at
        user.last_seen = str(raw_ts)

    app_name = str(app_name)
    label = str(resolve_label(application))
    user.events.append(UserEvent(timestamp=str(raw_ts), app_name=app_name, app_display_label=label, at=at))
    user.apps.add(app_name)

    app = state.apps.get(label)
    if app is None:
        app = state.apps[label] = _AppState()
    app.usage_count += 1
    app.users.add(user_id)

    return state


class Aggregator:
    """
    Builds an AggregationResult from event records.
    Responsibilities:
    - Apply the per-record rules in input order
    - Report progress between batches
    - Yield to the event loop between batches
    """

    def __init__(self, batch_size: int = BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size

    def _fold(
        self,
        state: AggregateState,
        records: Sequence[Any],
        on_progress: Optional[ProgressCallback],
    ) -> Iterator[None]:
        """Fold records into state batch by batch, pausing after each batch"""
        if not isinstance(records, (list, tuple)):
            records = list(records)

        total = len(records)
        for start in range(0, total, self.batch_size):
            batch = records[start:start + self.batch_size]
            reduce(step, batch, state)
            if on_progress:
                on_progress(percent(start + len(batch), total))
            yield

        if on_progress and total == 0:
            on_progress(100)

    async def build(
        self,
        records: Sequence[Any],
        on_progress: Optional[ProgressCallback] = None,
    ) -> AggregationResult:
        """Aggregate records, yielding control after every batch"""
        state = AggregateState()
        for _ in self._fold(state, records, on_progress):
            await asyncio.sleep(0)
        return self._finish(state)

    def build_sync(
        self,
        records: Sequence[Any],
        on_progress: Optional[ProgressCallback] = None,
    ) -> AggregationResult:
        """Same fold as build, without yielding"""
        state = AggregateState()
        for _ in self._fold(state, records, on_progress):
            pass
        return self._finish(state)

    @staticmethod
    def _finish(state: AggregateState) -> AggregationResult:
        result = state.freeze()
        logger.info(
            "Aggregated %d records: %d users, %d with app activity, %d applications",
            result.total_records,
            result.total_users,
            len(result.per_user_aggregates),
            len(result.per_application_aggregates),
        )
        return result
