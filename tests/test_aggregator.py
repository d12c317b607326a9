"""Tests for the aggregation pass."""

import dataclasses
from datetime import date

import pytest

from services.aggregator import Aggregator
from conftest import event


def test_scenario(build, scenario_records):
    result = build(scenario_records)

    assert result.total_users == 1
    assert result.total_records == 3
    assert set(result.per_application_aggregates) == {"app-a", "app-b"}
    for label in ("app-a", "app-b"):
        agg = result.per_application_aggregates[label]
        assert agg.usage_count == 1
        assert agg.unique_users == frozenset({"u1"})

    assert list(result.per_user_aggregates) == ["u1"]
    assert result.per_user_aggregates["u1"].app_count == 2
    assert result.date_range.min == date(2024, 1, 1)
    assert result.date_range.max == date(2024, 1, 2)


def test_last_seen_is_latest_regardless_of_order(build):
    records = [
        event("u1", "alice", "a", "2024-03-05T10:00:00Z"),
        event("u1", "alice", "b", "2024-03-01T10:00:00Z"),
        event("u1", "alice", "a", "2024-03-09T10:00:00Z"),
        event("u1", "alice", "c", "2024-03-02T10:00:00Z"),
    ]

    user = build(records).per_user_aggregates["u1"]

    assert user.last_seen == "2024-03-09T10:00:00Z"
    assert [e.timestamp for e in user.events] == [r["timestamp"] for r in records]


def test_user_without_activity_counts_globally_only(build):
    result = build([{"sso_token_success": True, "initiated_by": {"id": "u1"}}])

    assert result.total_users == 1
    assert len(result.per_user_aggregates) == 0
    assert len(result.per_application_aggregates) == 0
    assert result.date_range is None


def test_missing_app_name_is_not_aggregated(build):
    records = [
        {
            "sso_token_success": True,
            "timestamp": "2024-01-01T00:00:00Z",
            "initiated_by": {"id": "u1", "username": "alice"},
            "application": {"display_label": "Nameless"},
        }
    ]

    result = build(records)

    assert result.total_users == 1
    assert result.per_user_aggregates == {}
    assert result.date_range.min == date(2024, 1, 1)


def test_timestamp_without_user_still_sets_date_range(build):
    result = build([{"sso_token_success": True, "timestamp": "2023-12-31T22:00:00Z"}])

    assert result.total_users == 0
    assert result.date_range.min == date(2023, 12, 31)
    assert result.date_range.max == date(2023, 12, 31)


def test_failed_and_malformed_records_are_skipped(build):
    records = [
        event("u1", "alice", "a", "2024-01-01T00:00:00Z", success=False),
        event("u2", "bob", "a", "2024-01-01T00:00:00Z", success="true"),
        None,
        42,
        "string",
        [1, 2],
    ]

    result = build(records)

    assert result.total_records == 6
    assert result.total_users == 0
    assert result.date_range is None


def test_display_label_keys_applications_but_not_apps_used(build, mixed_records):
    result = build(mixed_records)

    assert list(result.per_application_counts) == ["Slack", "GitHub", "jira"]
    assert result.per_application_counts["Slack"] == 3
    assert result.per_user_aggregates["u1"].apps_used == frozenset({"slack", "github"})
    first = result.per_user_aggregates["u1"].events[0]
    assert (first.app_name, first.app_display_label) == ("slack", "Slack")


def test_mixed_totals(build, mixed_records):
    result = build(mixed_records)

    assert result.total_records == 8
    assert result.total_users == 4
    assert list(result.per_user_aggregates) == ["u1", "u2", "u3"]
    assert result.date_range.min == date(2024, 3, 1)
    assert result.date_range.max == date(2024, 3, 7)
    for agg in result.per_application_aggregates.values():
        assert len(agg.unique_users) <= agg.usage_count


def test_apps_used_matches_event_log(build, mixed_records):
    for user in build(mixed_records).per_user_aggregates.values():
        assert user.apps_used == frozenset(e.app_name for e in user.events)


def test_username_is_kept_from_first_sight(build):
    records = [
        event("u1", "alice", "a", "2024-01-01T00:00:00Z"),
        event("u1", "alice-renamed", "a", "2024-01-02T00:00:00Z"),
    ]

    assert build(records).per_user_aggregates["u1"].username == "alice"


def test_unparsable_timestamp_is_kept_but_not_compared(build):
    records = [
        event("u1", "alice", "a", "yesterday-ish"),
        event("u1", "alice", "b", "2024-02-02T00:00:00Z"),
    ]

    result = build(records)
    user = result.per_user_aggregates["u1"]

    assert len(user.events) == 2
    assert user.events[0].at is None
    assert user.last_seen == "2024-02-02T00:00:00Z"
    assert result.date_range.min == date(2024, 2, 2)


def test_only_unparsable_timestamps_leave_last_seen_empty(build):
    result = build([event("u1", "alice", "a", "garbage")])

    assert result.per_user_aggregates["u1"].last_seen is None
    assert result.date_range is None


def test_offsets_are_normalized_to_utc(build):
    result = build([event("u1", "alice", "a", "2024-01-01T23:30:00-05:00")])

    assert result.date_range.min == date(2024, 1, 2)


def test_numeric_user_id_is_stringified(build):
    result = build([event(42, "answer", "a", "2024-01-01T00:00:00Z")])

    assert list(result.per_user_aggregates) == ["42"]
    assert result.per_application_aggregates["a"].unique_users == frozenset({"42"})


def test_batch_size_does_not_change_the_result(build, mixed_records):
    small = build(mixed_records, batch_size=1)
    large = build(mixed_records, batch_size=10000)

    assert small.total_users == large.total_users
    assert small.date_range == large.date_range
    assert dict(small.per_user_aggregates) == dict(large.per_user_aggregates)
    assert dict(small.per_application_aggregates) == dict(large.per_application_aggregates)


def test_result_is_read_only(build, scenario_records):
    result = build(scenario_records)

    with pytest.raises(TypeError):
        result.per_user_aggregates["u9"] = None
    with pytest.raises(dataclasses.FrozenInstanceError):
        result.total_users = 99
    with pytest.raises(AttributeError):
        result.per_user_aggregates["u1"].apps_used.add("x")


@pytest.mark.asyncio
async def test_build_reports_progress_per_batch(mixed_records):
    records = mixed_records * 3
    progress = []

    result = await Aggregator(batch_size=10).build(records, progress.append)

    assert progress == [42, 83, 100]
    assert result.total_records == 24


@pytest.mark.asyncio
async def test_build_of_nothing(mixed_records):
    progress = []

    result = await Aggregator().build([], progress.append)

    assert progress == [100]
    assert result.total_users == 0
    assert result.date_range is None


@pytest.mark.asyncio
async def test_build_accepts_iterables(scenario_records):
    result = await Aggregator().build(iter(scenario_records))

    assert result.total_users == 1


@pytest.mark.asyncio
async def test_async_and_sync_builds_agree(build, mixed_records):
    async_result = await Aggregator(batch_size=3).build(mixed_records)

    assert async_result == build(mixed_records, batch_size=3)


def test_numeric_username_is_stringified(build):
    result = build([event("u1", 12345, "a", "2024-01-01T00:00:00Z")])

    assert result.per_user_aggregates["u1"].username == "12345"


def test_missing_username_stays_none(build):
    record = event("u1", None, "a", "2024-01-01T00:00:00Z")
    del record["initiated_by"]["username"]

    assert build([record]).per_user_aggregates["u1"].username is None


@pytest.mark.asyncio
async def test_async_and_sync_builds_report_the_same_progress(mixed_records):
    sync_progress, async_progress = [], []
    aggregator = Aggregator(batch_size=3)

    aggregator.build_sync(mixed_records, sync_progress.append)
    await aggregator.build(mixed_records, async_progress.append)

    assert sync_progress == async_progress == [38, 75, 100]
