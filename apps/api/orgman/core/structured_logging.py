"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    job_id: str | None = None,
    roster_mode: str | None = None,
    person_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = org_id
    if job_id:
        context["job_id"] = job_id
    if roster_mode:
        context["roster_mode"] = roster_mode
    if person_id:
        context["person_id"] = person_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
