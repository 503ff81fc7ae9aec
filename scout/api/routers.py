"""Internal API routers — /metrics, /signals, /feed, /settings, /reset endpoints.

No business logic, no DB access. Delegates to the shared ``ScoutService``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

logger = logging.getLogger("scout")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_service = None  # Set via configure_routers()


def configure_routers(service) -> None:
    """Inject the running ``ScoutService`` (or a duck-type for tests)."""
    global _service  # noqa: PLW0603
    _service = service


def _require_service():
    if _service is None:
        raise HTTPException(status_code=503, detail="Scout service not configured")
    return _service


# ── Query ────────────────────────────────────────────────────────────────


@router.get("/metrics")
async def get_metrics():
    """Aggregate stats, most recent signal and per-instrument status."""
    return _require_service().metrics()


@router.get("/signals/latest")
async def get_latest_signal():
    """Return the most recent recorded signal."""
    latest = _require_service().lifecycle.latest
    return {"signal": latest.to_payload() if latest else None}


@router.get("/signals/history")
async def get_signal_history(
    limit: int = Query(default=20, ge=1, le=50),
):
    """Return recorded signals, newest first."""
    return {"signals": _require_service().lifecycle.history(limit)}


@router.get("/feed")
async def get_feed():
    """The delivery-channel document polled by executors."""
    return _require_service().lifecycle.publisher.feed()


# ── Settings ─────────────────────────────────────────────────────────────


@router.get("/settings")
async def get_settings():
    return _require_service().settings.to_dict()


@router.put("/settings")
async def put_settings(body: dict):
    """Update operator settings and persist them.

    Changing ``signalIntervalMinutes`` re-arms the interval gate.
    """
    service = _require_service()
    try:
        settings = service.apply_settings(body)
    except (ValueError, TypeError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    logger.info("Settings updated: %s", settings.to_dict())
    return {"status": "ok", **settings.to_dict()}


@router.post("/payouts")
async def post_payouts(body: dict):
    """Store broker payout percentages keyed by instrument."""
    service = _require_service()
    payouts: dict[str, Optional[float]] = {}
    for instrument, value in body.items():
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise HTTPException(status_code=422, detail=f"Invalid payout for {instrument}: {value!r}")
        payouts[instrument] = value
    service.update_payouts(payouts)
    return {"status": "ok", "updated": len(payouts)}


# ── Control ──────────────────────────────────────────────────────────────


@router.post("/reset")
async def reset_history():
    """Zero stats and clear signal history and per-instrument engine state."""
    _require_service().reset()
    logger.info("Signal history reset via API.")
    return {"status": "reset"}
