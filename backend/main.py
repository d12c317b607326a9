from __future__ import annotations

import logging
import sys
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from config import API_PREFIX, CHART_TOP_N, CORS_ORIGINS, LOG_LEVEL
from models.data_models import (
    ALL_APPLICATIONS,
    DateRange,
    FilterCriteria,
    FilteredApplication,
    FilteredUser,
)
from services.filters import application_options, default_criteria, top_applications
from services.storage import DatasetStore, ReadError

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# Serialization
# ──────────────────────────────────────────────────────────────────────────────


def date_range_dict(dr: Optional[DateRange]) -> Optional[Dict[str, str]]:
    if dr is None:
        return None
    return {"min": dr.min.isoformat(), "max": dr.max.isoformat()}


def user_dict(fu: FilteredUser) -> Dict[str, Any]:
    u = fu.user
    return {
        "user_id": u.user_id,
        "username": u.username,
        "app_count": u.app_count,
        "apps": sorted(u.apps_used),
        "apps_in_range": list(fu.apps_in_range),
        "app_count_in_range": fu.app_count_in_range,
        "last_seen": u.last_seen,
    }


def app_dict(a: FilteredApplication) -> Dict[str, Any]:
    return {"name": a.name, "user_count": a.user_count, "session_count": a.session_count}


def criteria_dict(c: FilterCriteria) -> Dict[str, Any]:
    return {
        "start_date": c.start_date.isoformat() if c.start_date else None,
        "end_date": c.end_date.isoformat() if c.end_date else None,
        "app": c.application_label,
        "search": c.username_substring,
    }


# ──────────────────────────────────────────────────────────────────────────────
# App
# ──────────────────────────────────────────────────────────────────────────────

app = FastAPI(title="SSO Metrics Explorer (Upload Logs → Usage APIs)")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = DatasetStore()


def require_store() -> DatasetStore:
    if not store.loaded:
        raise HTTPException(status_code=404, detail="No dataset loaded")
    return store


def build_criteria(
    start_date: Optional[date],
    end_date: Optional[date],
    app_label: str,
    search: Optional[str],
) -> FilterCriteria:
    """Query params to criteria. Without dates the whole dataset range applies."""
    if start_date is None and end_date is None:
        base = default_criteria(store.result)
        start_date, end_date = base.start_date, base.end_date
    return FilterCriteria(
        start_date=start_date,
        end_date=end_date,
        application_label=app_label or ALL_APPLICATIONS,
        username_substring=search or None,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Upload + progress
# ──────────────────────────────────────────────────────────────────────────────

@app.post(f"{API_PREFIX}/upload-log")
async def upload_log_file(file: UploadFile = File(...)) -> Dict[str, Any]:
    """
    Accepts a JSON array or JSONL of SSO events and builds the dataset.
    Corrupt lines are skipped; only unreadable input is an error.
    """
    try:
        content = await file.read()
    except OSError as exc:
        logger.error("Reading upload %s failed: %s", file.filename, exc)
        raise HTTPException(status_code=400, detail="Error reading file") from exc

    try:
        result = await store.ingest(content)
    except ReadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "status": "ok",
        "mode": store.mode,
        "records": result.total_records,
        "total_users": result.total_users,
        "applications": len(result.per_application_counts),
        "date_range": date_range_dict(result.date_range),
    }


@app.get(f"{API_PREFIX}/progress")
def progress() -> Dict[str, Any]:
    s = store.status
    return {"phase": s.phase, "progress": s.progress, "error": s.error}


@app.get(f"{API_PREFIX}/health")
def health() -> Dict[str, Any]:
    result = store.result
    return {
        "status": "ok",
        "dataset_loaded": store.loaded,
        "records": result.total_records if result else 0,
        "date_range": date_range_dict(result.date_range) if result else None,
    }


# ──────────────────────────────────────────────────────────────────────────────
# Summary
# ──────────────────────────────────────────────────────────────────────────────

@app.get(f"{API_PREFIX}/summary")
def summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    app_label: str = Query(ALL_APPLICATIONS, alias="app"),
    search: Optional[str] = Query(None),
) -> Dict[str, Any]:
    s = require_store()
    criteria = build_criteria(start_date, end_date, app_label, search)
    summ = s.cache.summary(criteria)
    chart = top_applications(list(s.cache.applications(criteria)), CHART_TOP_N)

    return {
        "summary": {
            "total_records": summ.total_records,
            "active_users": summ.active_users,
            "application_count": summ.application_count,
            "date_range": date_range_dict(summ.date_range),
            "filtered_user_count": summ.filtered_user_count,
            "filtered_user_share": summ.filtered_user_share,
            "top_applications": [app_dict(a) for a in summ.top_applications],
        },
        "chart": [app_dict(a) for a in chart],
        "filters": criteria_dict(criteria),
    }


# ──────────────────────────────────────────────────────────────────────────────
# Users by application
# ──────────────────────────────────────────────────────────────────────────────

@app.get(f"{API_PREFIX}/users")
def users(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    app_label: str = Query(ALL_APPLICATIONS, alias="app"),
    search: Optional[str] = Query(None),
    limit: int = Query(1000, ge=1, le=100000),
) -> Dict[str, Any]:
    s = require_store()
    criteria = build_criteria(start_date, end_date, app_label, search)
    rows = s.cache.users(criteria)

    return {
        "count": len(rows),
        "users": [user_dict(u) for u in rows[:limit]],
        "filters": criteria_dict(criteria),
    }


# ──────────────────────────────────────────────────────────────────────────────
# Application usage
# ──────────────────────────────────────────────────────────────────────────────

@app.get(f"{API_PREFIX}/applications")
def applications(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    app_label: str = Query(ALL_APPLICATIONS, alias="app"),
    search: Optional[str] = Query(None),
) -> Dict[str, Any]:
    s = require_store()
    criteria = build_criteria(start_date, end_date, app_label, search)
    rows: List[FilteredApplication] = list(s.cache.applications(criteria))

    return {"applications": [app_dict(a) for a in rows], "filters": criteria_dict(criteria)}


@app.get(f"{API_PREFIX}/applications/options")
def applications_options() -> Dict[str, Any]:
    s = require_store()
    return {"options": [ALL_APPLICATIONS] + application_options(s.result)}
