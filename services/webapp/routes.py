"""
HTTP route handlers for the earnings and leaderboard API.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from earnings.errors import TemporarilyUnavailable, UserNotFound
from earnings.events import RecentEventLog
from services.earnings import EarningsService
from services.webapp.dependencies import (
    INITIAL_ENDOWMENT,
    get_earnings_service,
    get_event_log,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/earnings", tags=["earnings"])

RETRY_AFTER_SECONDS = 5


class ProvisionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    initial_endowment: float = INITIAL_ENDOWMENT
    display_name: Optional[str] = Field(None, max_length=120)


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, UserNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, TemporarilyUnavailable):
        logger.warning("Earnings store unavailable for request: %s", exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    raise exc


@router.post("/users", status_code=status.HTTP_201_CREATED)
def provision_user(
    request: ProvisionRequest,
    service: EarningsService = Depends(get_earnings_service),
) -> dict:
    try:
        earnings = service.provision_user(
            request.user_id,
            request.initial_endowment,
            display_name=request.display_name,
        )
    except (TemporarilyUnavailable, ValueError) as exc:
        raise _translate(exc) from exc
    return asdict(earnings)


@router.post("/users/{user_id}/transactions")
def record_transaction(
    user_id: str,
    service: EarningsService = Depends(get_earnings_service),
) -> dict:
    try:
        earnings = service.record_transaction(user_id)
    except (UserNotFound, TemporarilyUnavailable) as exc:
        raise _translate(exc) from exc
    return asdict(earnings)


@router.get("/users/{user_id}")
def get_user_earnings(
    user_id: str,
    service: EarningsService = Depends(get_earnings_service),
) -> dict:
    try:
        earnings = service.get_user_earnings(user_id)
    except (UserNotFound, TemporarilyUnavailable) as exc:
        raise _translate(exc) from exc
    return asdict(earnings)


@router.get("/users/{user_id}/rank")
def get_user_rank(
    user_id: str,
    period: str = Query("overall"),
    service: EarningsService = Depends(get_earnings_service),
) -> dict:
    try:
        rank = service.get_user_rank(user_id, period)
    except (UserNotFound, TemporarilyUnavailable, ValueError) as exc:
        raise _translate(exc) from exc
    return {"user_id": user_id, "period": period, "rank": rank}


@router.get("/users/{user_id}/snapshots")
def get_daily_snapshots(
    user_id: str,
    limit: int = Query(30, ge=1, le=366),
    service: EarningsService = Depends(get_earnings_service),
) -> dict:
    try:
        snapshots = service.get_daily_snapshots(user_id, limit=limit)
    except (UserNotFound, TemporarilyUnavailable) as exc:
        raise _translate(exc) from exc
    return {"user_id": user_id, "snapshots": [asdict(snapshot) for snapshot in snapshots]}


@router.get("/leaderboard")
def get_leaderboard(
    period: str = Query("overall"),
    user_id: Optional[str] = Query(None),
    service: EarningsService = Depends(get_earnings_service),
) -> dict:
    try:
        leaders = service.get_leaderboard(period, requesting_user_id=user_id)
    except ValueError as exc:
        raise _translate(exc) from exc
    return {
        "period": period,
        "as_of": datetime.now(tz=timezone.utc).isoformat(),
        "leaders": [asdict(entry) for entry in leaders],
    }


@router.post("/admin/flush")
def force_flush(service: EarningsService = Depends(get_earnings_service)) -> dict:
    result = service.force_flush()
    return {
        "persisted": result.persisted,
        "failed": result.failed,
        "snapshots": result.snapshots,
        "flushed_at": result.flushed_at.isoformat(),
    }


@router.get("/admin/stats")
def get_stats(service: EarningsService = Depends(get_earnings_service)) -> dict:
    return service.stats()


@router.get("/admin/events")
def get_recent_events(
    limit: int = Query(50, ge=1, le=500),
    events: RecentEventLog = Depends(get_event_log),
) -> dict:
    return {"events": [asdict(event) for event in events.recent(limit)]}
