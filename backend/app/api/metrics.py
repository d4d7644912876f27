"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Response

from app.monitoring.metrics import realtime_sessions
from app.monitoring.registry import registry
from greconnect.realtime import get_session_registry


router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=Response)
def export_metrics() -> Response:
    """Expose collected metrics for Prometheus scraping."""

    realtime_sessions.set(len(get_session_registry()))
    return Response(content=registry.render(), media_type="text/plain; version=0.0.4")
