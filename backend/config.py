"""
Configuration

Module-level settings read from the environment.
"""

import os

API_PREFIX = os.getenv("API_PREFIX", "/api")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Records per batch for both parsing and aggregation. Only affects latency.
BATCH_SIZE = int(os.getenv("SSO_BATCH_SIZE", "10000"))

# Comma separated; "*" is fine for local use
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# How many applications the summary chart and table show
CHART_TOP_N = 10
TABLE_TOP_N = 5
