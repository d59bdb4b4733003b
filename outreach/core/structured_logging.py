"""Structured logging helpers (token-safe)."""

from typing import Any


def build_log_context(
    *,
    user_id: str | None = None,
    candidate_id: str | None = None,
    job_id: str | None = None,
    thread_id: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict. Never pass tokens or message bodies here."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if candidate_id:
        context["candidate_id"] = str(candidate_id)
    if job_id:
        context["job_id"] = str(job_id)
    if thread_id:
        context["thread_id"] = thread_id
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
