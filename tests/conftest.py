"""Shared fixtures for the SSO metrics tests."""

import json

import pytest

from services.aggregator import Aggregator


def event(user_id, username, app_name, timestamp, display_label=None, success=True):
    application = {"name": app_name}
    if display_label is not None:
        application["display_label"] = display_label
    return {
        "sso_token_success": success,
        "timestamp": timestamp,
        "initiated_by": {"id": user_id, "username": username},
        "application": application,
    }


@pytest.fixture
def scenario_records():
    """Two successful logins for alice and one failed login for bob."""
    return [
        event("u1", "alice", "app-a", "2024-01-01T10:00:00Z"),
        event("u1", "alice", "app-b", "2024-01-02T10:00:00Z"),
        event("u2", "bob", "app-a", "2024-01-03T10:00:00Z", success=False),
    ]


@pytest.fixture
def mixed_records():
    """Several users and apps across a week, some with display labels."""
    return [
        event("u1", "Alice", "slack", "2024-03-01T08:00:00Z", "Slack"),
        event("u2", "bob", "slack", "2024-03-01T09:30:00Z", "Slack"),
        event("u2", "bob", "github", "2024-03-03T12:00:00Z", "GitHub"),
        event("u3", "carol", "jira", "2024-03-05T23:59:59Z"),
        event("u1", "Alice", "github", "2024-03-07T00:00:00Z", "GitHub"),
        event("u3", "carol", "slack", "2024-03-07T18:00:00Z", "Slack"),
        event("u4", "dave", "jira", "2024-03-02T10:00:00Z", success=False),
        {"sso_token_success": True, "initiated_by": {"id": "u5", "username": "eve"}},
    ]


@pytest.fixture
def build():
    def _build(records, batch_size=10000):
        return Aggregator(batch_size).build_sync(records)

    return _build


@pytest.fixture
def jsonl():
    def _jsonl(records):
        return "\n".join(json.dumps(r) for r in records) + "\n"

    return _jsonl
