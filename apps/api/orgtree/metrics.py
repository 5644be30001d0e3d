from __future__ import annotations

import re
from collections.abc import Iterable

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

hierarchy_validation_errors_total = Counter(
    "hierarchy_validation_errors_total",
    "Total hierarchy validation errors by type",
    ["type"],
)

hierarchy_reparent_total = Counter(
    "hierarchy_reparent_total",
    "Total reparent gestures by outcome",
    ["outcome"],
)

hierarchy_load_failures_total = Counter(
    "hierarchy_load_failures_total",
    "Total failed organization list loads",
)

hierarchy_build_duration_seconds = Histogram(
    "hierarchy_build_duration_seconds",
    "Time spent building and validating the organization forest",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_hierarchy_validation(error_types: Iterable[str]) -> None:
    for error_type in error_types:
        hierarchy_validation_errors_total.labels(type=error_type).inc()


def observe_reparent(outcome: str) -> None:
    hierarchy_reparent_total.labels(outcome=outcome).inc()


def observe_hierarchy_load_failure() -> None:
    hierarchy_load_failures_total.inc()


def observe_hierarchy_build(duration: float) -> None:
    hierarchy_build_duration_seconds.observe(duration)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
