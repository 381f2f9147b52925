"""Prometheus metrics for import pipeline observability.

Counters and histograms at each pipeline stage.
Exposed via /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, make_asgi_app

# Pipeline counters
import_records_total = Counter(
    "import_records_total",
    "Total canonical records processed by the import pipeline",
    ["source", "outcome"],  # outcome: added, updated, unchanged, skipped, failed
)

import_warnings_total = Counter(
    "import_warnings_total",
    "Total recoverable warnings raised during imports",
    ["source", "stage"],  # stage: parse, normalize, merge, persist
)

intraday_days_stored_total = Counter(
    "intraday_days_stored_total",
    "Total intraday sample days written (full replace)",
    ["kind"],
)

intraday_days_purged_total = Counter(
    "intraday_days_purged_total",
    "Total intraday sample days removed by the retention sweep",
    ["kind"],
)

# API counters
api_requests_total = Counter(
    "api_requests_total",
    "Total API requests",
    ["endpoint", "method", "status_code"],
)

# Histograms
import_duration_seconds = Histogram(
    "import_duration_seconds",
    "Duration of the confirm phase of an import run",
    ["source"],
)

api_response_duration_seconds = Histogram(
    "api_response_duration_seconds",
    "API response duration",
    ["endpoint"],
)

parse_duration_seconds = Histogram(
    "parse_duration_seconds",
    "Duration of input parsing up to the preview",
    ["source"],
)


def create_metrics_app():
    """Create ASGI app for /metrics endpoint."""
    return make_asgi_app()
