"""Prometheus metrics for auth operations (exposed at /metrics)."""

from prometheus_client import Counter

AUTH_EVENTS = Counter(
    "auth_events_total",
    "Auth operations by event and outcome",
    ["event", "outcome"],
)


def track(event: str, outcome: str) -> None:
    AUTH_EVENTS.labels(event=event, outcome=outcome).inc()
